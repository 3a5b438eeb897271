"""Runtime kind and build information."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum


class Runtime(StrEnum):
    STANDALONE = "standalone"
    LAMBDA = "lambda"


@dataclass
class BuildInfo:
    environment: str = "unknown"
    revision: str = "UNKNOWN"
    build_time: str = "0"
    runtime: Runtime = Runtime.STANDALONE

    def to_dict(self) -> dict[str, str]:
        return {
            "runtime": str(self.runtime),
            "environment": self.environment,
            "revision": self.revision,
            "built_at": self.build_time,
        }


def build_info() -> BuildInfo:
    """Read build information from the environment, falling back to defaults."""
    defaults = BuildInfo()
    runtime_name = os.environ.get("PROOFSERVER_RUNTIME", str(defaults.runtime))
    return BuildInfo(
        environment=os.environ.get("PROOFSERVER_ENVIRONMENT", defaults.environment),
        revision=os.environ.get("PROOFSERVER_REVISION", defaults.revision),
        build_time=os.environ.get("PROOFSERVER_BUILD_TIME", defaults.build_time),
        runtime=Runtime(runtime_name),
    )