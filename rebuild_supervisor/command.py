"""
Supervisors that keep a long-running program informed of rebuilds.

A command owns at most one process group running the program built from a
target. The watcher calls start() once and notify_of_changes() on every
detected change; the command rebuilds the target and tells the running
program about it, or restarts the program if it is no longer alive.

Two transports exist: NotifyCommand writes protocol lines to the program's
stdin, SignalCommand sends it a refresh signal.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Optional, Sequence

from .builder import Builder
from .errors import NotificationWriteFailure, StartupFailure
from .models import (
    BUILD_COMPLETED_FAILURE,
    BUILD_COMPLETED_SUCCESS,
    BUILD_STARTED,
    NOTIFY_CHANGES_ENV,
    SIGNAL_CHANGES_ENV,
    SupervisorState,
    TerminationPolicy,
)
from .process_group import PosixProcessGroup, ProcessGroup

logger = logging.getLogger(__name__)

TRANSPORT_ENV_FLAGS = (NOTIFY_CHANGES_ENV, SIGNAL_CHANGES_ENV)


class Command(ABC):
    """Owns the process group of one target and drives its rebuild cycle.

    Calls on one instance must be serialized by the caller (normally the
    watcher's event loop); no locking is done here.
    """

    env_flag: Optional[str] = None

    def __init__(
        self,
        target: str,
        startup_args: Sequence[str] = (),
        build_args: Sequence[str] = (),
        program_args: Sequence[str] = (),
        termination_policy: TerminationPolicy = TerminationPolicy.GRACEFUL,
        builder_factory: Callable[[], Builder] = Builder,
        process_group_factory: Callable[..., ProcessGroup] = PosixProcessGroup,
        log: logging.Logger = None,
    ):
        self.target = target
        self.startup_args = list(startup_args)
        self.build_args = list(build_args)
        self.program_args = list(program_args)
        self.termination_policy = termination_policy
        self.log = log or logger

        self._builder_factory = builder_factory
        self._process_group_factory = process_group_factory
        self._process_group: Optional[ProcessGroup] = None
        self._script_path: Optional[str] = None
        self._state = SupervisorState.NOT_RUNNING

    @property
    def state(self) -> SupervisorState:
        if self._state == SupervisorState.RUNNING and not self.is_subprocess_running():
            return SupervisorState.NOT_RUNNING
        return self._state

    def is_subprocess_running(self) -> bool:
        """Check if a process group is owned and its root is still alive."""
        return self._process_group is not None and self._process_group.root_process().is_alive()

    def start(self) -> bytes:
        """Build the target and spawn a fresh process group running it.

        Returns the captured build output. Raises StartupFailure, carrying
        that output, if the program cannot be spawned.
        """
        self._replace_process_group()
        self._state = SupervisorState.STARTING

        builder = self._new_builder()
        output = self._build_launcher(builder)
        process_group = self._process_group_factory(self._script_path, *self.program_args)
        self._process_group = process_group

        try:
            self._prepare(process_group)
            process_group.root_process().env = self._environment()
            process_group.start()
        except (OSError, RuntimeError) as e:
            self.log.error(f"Error starting process: {e}")
            self._release_process_group()
            raise StartupFailure(str(e), output=output) from e

        self._state = SupervisorState.RUNNING
        self.log.info("Starting...")
        return output

    def notify_of_changes(self) -> bytes:
        """Handle one detected change and return the build output."""
        if not self.is_subprocess_running():
            try:
                return self.start()
            except StartupFailure as e:
                return e.output

        return self._notify(self._new_builder())

    def terminate(self):
        """Stop the owned process group, if it is still running."""
        process_group = self._process_group
        if process_group is None or not process_group.root_process().is_alive():
            return

        self._state = SupervisorState.TERMINATING
        if self.termination_policy == TerminationPolicy.FORCED:
            process_group.kill()
        else:
            process_group.terminate()
        process_group.wait()
        self._release_process_group()

    def _new_builder(self) -> Builder:
        builder = self._builder_factory()
        builder.set_startup_args(self.startup_args)
        builder.set_arguments(self.build_args)
        builder.write_to_stderr(True)
        builder.write_to_stdout(True)
        return builder

    def _build_launcher(self, builder: Builder) -> bytes:
        """Build the target into a launcher script and remember its path."""
        try:
            fd, self._script_path = tempfile.mkstemp(prefix="bazel_script_path")
        except OSError as e:
            self._state = SupervisorState.NOT_RUNNING
            self.log.error(f"Error creating script path: {e}")
            raise StartupFailure(f"Error creating script path: {e}") from e
        os.close(fd)

        result = builder.run(self.target, self._script_path)
        if not result.success:
            self.log.error(f"Build of {self.target} failed: {result.error}")
        return result.output

    def _environment(self) -> dict[str, str]:
        env = {k: v for k, v in os.environ.items() if k not in TRANSPORT_ENV_FLAGS}
        env[self.env_flag] = "y"
        return env

    def _replace_process_group(self):
        if self._process_group is None:
            return
        if self.is_subprocess_running():
            self.terminate()
        else:
            self._release_process_group()

    def _release_process_group(self):
        if self._process_group is not None:
            self._process_group.close()
        self._process_group = None
        self._state = SupervisorState.NOT_RUNNING

        if self._script_path:
            try:
                os.unlink(self._script_path)
            except FileNotFoundError:
                pass
            self._script_path = None

    def _prepare(self, process_group: ProcessGroup):
        """Wire up the transport before the process group starts."""

    @abstractmethod
    def _notify(self, builder: Builder) -> bytes:
        """Rebuild the target and notify the running program."""


class NotifyCommand(Command):
    """Notifies the program of rebuilds through lines on its stdin."""

    env_flag = NOTIFY_CHANGES_ENV

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._stdin: Optional[BinaryIO] = None

    def _prepare(self, process_group: ProcessGroup):
        try:
            self._stdin = process_group.root_process().stdin_pipe()
        except OSError as e:
            self.log.error(f"Error getting stdin pipe: {e}")
            raise

    def _release_process_group(self):
        super()._release_process_group()
        self._stdin = None

    def _notify(self, builder: Builder) -> bytes:
        self._write(BUILD_STARTED)

        result = builder.build(self.target)
        if not result.success:
            self.log.error(f"IBAZEL BUILD FAILURE: {result.error}")
            self._write(BUILD_COMPLETED_FAILURE)
        else:
            self.log.info("IBAZEL BUILD SUCCESS")
            self._write(BUILD_COMPLETED_SUCCESS)
        return result.output

    def _write(self, line: str):
        try:
            self._stdin.write(line.encode("utf-8"))
            self._stdin.flush()
        except (OSError, ValueError) as e:
            self.log.error(str(NotificationWriteFailure(line, e)))


class SignalCommand(Command):
    """Notifies the program of rebuilds with a refresh signal."""

    env_flag = SIGNAL_CHANGES_ENV

    def _notify(self, builder: Builder) -> bytes:
        result = builder.build(self.target)
        if result.success:
            self.log.info("IBAZEL BUILD SUCCESS")
        else:
            self.log.error(f"IBAZEL BUILD FAILURE: {result.error}")

        try:
            self._process_group.refresh_signal()
        except OSError as e:
            self.log.error(f"Error sending refresh signal: {e}")
        return result.output


COMMANDS = {
    "notify": NotifyCommand,
    "signal": SignalCommand,
}


def new_command(mode: str, target: str, **kwargs) -> Command:
    """Create the command for a notification mode ("notify" or "signal")."""
    try:
        command_class = COMMANDS[mode]
    except KeyError:
        raise ValueError(f"Unknown notification mode: {mode!r}") from None
    return command_class(target, **kwargs)
