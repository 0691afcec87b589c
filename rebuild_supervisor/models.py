"""
Data types shared by the supervisors and their collaborators.

Holds the termination policy, the supervisor lifecycle states, build results,
and the literal strings of the notification protocol.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Environment flags announcing the notification transport to the subprocess
NOTIFY_CHANGES_ENV = "IBAZEL_NOTIFY_CHANGES"
SIGNAL_CHANGES_ENV = "IBAZEL_SIGNAL_CHANGES"

# Stdin protocol lines
BUILD_STARTED = "IBAZEL_BUILD_STARTED\n"
BUILD_COMPLETED_SUCCESS = "IBAZEL_BUILD_COMPLETED SUCCESS\n"
BUILD_COMPLETED_FAILURE = "IBAZEL_BUILD_COMPLETED FAILURE\n"


class TerminationPolicy(Enum):
    GRACEFUL = "graceful"
    FORCED = "forced"

    @classmethod
    def from_name(cls, name: str) -> "TerminationPolicy":
        """Parse a policy name, accepting "kill" as an alias of forced."""
        normalized = name.strip().lower()
        if normalized == "kill":
            return cls.FORCED
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown termination policy: {name!r}") from None


class SupervisorState(Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"


@dataclass
class BuildResult:
    """Outcome of one build tool invocation."""

    output: bytes = b""
    returncode: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "returncode": self.returncode,
            "error": self.error,
            "success": self.success,
            "output_bytes": len(self.output),
        }
