[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "proofserver"
version = "0.1.0"
description = "HTTP service that stores and answers queries about signed identity proofs binding a persona key to accounts on other platforms"
requires-python = ">=3.11"
keywords = [
    "identity",
    "proof",
    "persona",
    "secp256k1",
    "base1024",
    "http",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "pycryptodome",
    "flask",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
proofserver = "proofserver.server:main"
proofserver-cli = "proofserver.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["proofserver"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
