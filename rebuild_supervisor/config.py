"""
Configuration for the rebuild supervisor.

Loads settings from environment variables (and a local .env file) with
sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import TerminationPolicy

load_dotenv()


@dataclass
class Config:
    """Supervisor configuration."""

    # Build tool
    bazel_path: str = os.environ.get("IBAZEL_BAZEL_PATH", "bazel")

    # Process management
    termination_policy: str = os.environ.get("IBAZEL_TERMINATION", "graceful")

    # Logging
    log_level: str = os.environ.get("IBAZEL_LOG_LEVEL", "INFO")
    log_file: Path = None
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    def __post_init__(self):
        """Resolve the optional log file path."""
        if self.log_file is None and os.environ.get("IBAZEL_LOG_FILE"):
            self.log_file = Path(os.environ["IBAZEL_LOG_FILE"]).expanduser()
        if self.log_file is not None:
            self.log_file = Path(self.log_file)
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def policy(self) -> TerminationPolicy:
        """Get the configured termination policy."""
        return TerminationPolicy.from_name(self.termination_policy)


config = Config()
