"""
Build tool invocation.

Wraps the bazel command line: runs a build (or a run that only writes a
launcher script) for one target, captures stdout/stderr into a single output
buffer and optionally echoes both streams to the supervisor's own console.
"""

import logging
import os
import subprocess
import sys
import threading
from typing import BinaryIO, Optional, Sequence

from .config import config
from .models import BuildResult

logger = logging.getLogger(__name__)


class Builder:
    """Runs the build tool for a target and captures its output."""

    def __init__(self, bazel_path: str = None):
        self.bazel_path = bazel_path or config.bazel_path
        self._startup_args: list[str] = []
        self._args: list[str] = []
        self._write_to_stdout = False
        self._write_to_stderr = False

    def set_startup_args(self, args: Sequence[str]):
        """Set options placed before the build tool's command."""
        self._startup_args = list(args)

    def set_arguments(self, args: Sequence[str]):
        """Set options placed after the build tool's command."""
        self._args = list(args)

    def write_to_stdout(self, enabled: bool):
        self._write_to_stdout = enabled

    def write_to_stderr(self, enabled: bool):
        self._write_to_stderr = enabled

    def build(self, target: str) -> BuildResult:
        """Build a target."""
        return self._invoke("build", [target])

    def run(self, target: str, script_path: str) -> BuildResult:
        """Build a target and write a launcher script for it to script_path."""
        return self._invoke("run", [f"--script_path={script_path}", target])

    def command_line(self, command: str, extra: Sequence[str]) -> list[str]:
        return [self.bazel_path, *self._startup_args, command, *self._args, *extra]

    def _invoke(self, command: str, extra: Sequence[str]) -> BuildResult:
        cmd = self.command_line(command, extra)
        logger.debug(f"Running {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=os.environ.copy(),
            )
        except OSError as e:
            logger.error(f"Failed to run {self.bazel_path}: {e}")
            return BuildResult(error=str(e))

        output = bytearray()
        lock = threading.Lock()
        threads = [
            threading.Thread(
                target=self._capture_output,
                args=(process.stdout, output, lock, self._echo_stream(sys.stdout, self._write_to_stdout)),
                daemon=True,
            ),
            threading.Thread(
                target=self._capture_output,
                args=(process.stderr, output, lock, self._echo_stream(sys.stderr, self._write_to_stderr)),
                daemon=True,
            ),
        ]
        for thread in threads:
            thread.start()

        returncode = process.wait()
        for thread in threads:
            thread.join()

        result = BuildResult(output=bytes(output), returncode=returncode)
        if returncode != 0:
            result.error = f"{command} {' '.join(extra)} exited with status {returncode}"
        logger.debug(f"Build tool finished: {result.to_dict()}")
        return result

    @staticmethod
    def _echo_stream(stream, enabled: bool) -> Optional[BinaryIO]:
        if not enabled:
            return None
        return getattr(stream, "buffer", None)

    @staticmethod
    def _capture_output(
        stream: BinaryIO,
        output: bytearray,
        lock: threading.Lock,
        echo: Optional[BinaryIO],
    ):
        """Copy a build tool stream into the shared output buffer."""
        try:
            for line in iter(stream.readline, b""):
                with lock:
                    output.extend(line)
                if echo is not None:
                    try:
                        echo.write(line)
                        echo.flush()
                    except (OSError, ValueError) as e:
                        logger.debug(f"Could not echo build output: {e}")
        finally:
            stream.close()
