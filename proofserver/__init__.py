"""Identity proof service: proof chains in SQLite, signatures, Base1024 and a read-only HTTP API."""

__version__ = "0.1.0"

__all__ = [
    "base1024",
    "cli",
    "config",
    "headless",
    "model",
    "runtime",
    "server",
    "signing",
    "sqs",
    "types",
    "util",
]