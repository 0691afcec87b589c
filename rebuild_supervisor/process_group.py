"""
Process groups for supervised subprocesses.

A process group is a root process plus every descendant it spawns, started,
signalled and reaped as one unit. The root is launched in a new session so
its pid doubles as the group id.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)


class RootProcess:
    """The process a group is started from."""

    def __init__(self, args: Sequence[str], env: dict[str, str] = None):
        self.args = list(args)
        self.env = env
        self.popen: Optional[subprocess.Popen] = None
        self._stdin_read: Optional[int] = None
        self._stdin_write: Optional[BinaryIO] = None

    @property
    def pid(self) -> int | None:
        return self.popen.pid if self.popen else None

    @property
    def returncode(self) -> int | None:
        if self.popen is None:
            return None
        return self.popen.poll()

    def stdin_pipe(self) -> BinaryIO:
        """Create a pipe that becomes the process's stdin once it starts.

        Returns the write end. Must be called before the process is started.
        """
        if self.popen is not None:
            raise RuntimeError("stdin_pipe after process started")
        if self._stdin_write is not None:
            raise RuntimeError("stdin_pipe already called")

        read_fd, write_fd = os.pipe()
        self._stdin_read = read_fd
        self._stdin_write = os.fdopen(write_fd, "wb")
        return self._stdin_write

    def is_alive(self) -> bool:
        """Check if the process was started and has not exited."""
        return self.popen is not None and self.popen.poll() is None


class ProcessGroup(ABC):
    """A root process and its descendants, managed as one unit."""

    @abstractmethod
    def root_process(self) -> RootProcess:
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def kill(self) -> None:
        pass

    @abstractmethod
    def terminate(self) -> None:
        pass

    @abstractmethod
    def wait(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def refresh_signal(self) -> None:
        """Tell the root process to reload after a rebuild."""
        pass


class PosixProcessGroup(ProcessGroup):
    """Process group backed by a POSIX session."""

    refresh_signum = signal.SIGHUP

    def __init__(self, path: str, *args: str):
        self._root = RootProcess([path, *args])
        self._pgid: Optional[int] = None
        self._members: list[psutil.Process] = []

    def root_process(self) -> RootProcess:
        return self._root

    def start(self):
        """Spawn the root process in a new session."""
        root = self._root
        if root.popen is not None:
            raise RuntimeError("Process group already started")

        try:
            root.popen = subprocess.Popen(
                root.args,
                stdin=root._stdin_read if root._stdin_read is not None else subprocess.DEVNULL,
                env=root.env,
                start_new_session=True,  # Root leads its own process group
            )
        finally:
            if root._stdin_read is not None:
                os.close(root._stdin_read)
                root._stdin_read = None

        self._pgid = os.getpgid(root.popen.pid)
        logger.info(f"Started {root.args[0]} with PID {root.popen.pid}")

    def kill(self):
        self._signal_group(signal.SIGKILL)

    def terminate(self):
        self._signal_group(signal.SIGTERM)

    def wait(self):
        """Block until the root and every known descendant have exited."""
        root = self._root
        if root.popen is None:
            return

        if not self._members:
            self._members = self._descendants()

        returncode = root.popen.wait()
        logger.debug(f"Process {root.popen.pid} exited with {returncode}")

        # Reparented descendants are reaped by init, if at all; a zombie counts as exited
        while self._members:
            _, alive = psutil.wait_procs(self._members, timeout=0.1)
            self._members = [proc for proc in alive if not _is_zombie(proc)]

    def close(self):
        """Release the pipes held by the parent."""
        root = self._root
        if root._stdin_read is not None:
            os.close(root._stdin_read)
            root._stdin_read = None
        if root._stdin_write is not None:
            try:
                root._stdin_write.close()
            except OSError as e:
                logger.debug(f"Error closing stdin of {root.args[0]}: {e}")
            root._stdin_write = None

    def refresh_signal(self):
        root = self._root
        if root.popen is None:
            raise ProcessLookupError("Process group was never started")
        os.kill(root.popen.pid, self.refresh_signum)

    def _descendants(self) -> list[psutil.Process]:
        try:
            return psutil.Process(self._root.popen.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []

    def _signal_group(self, signum: signal.Signals):
        if self._pgid is None:
            return

        # Snapshot before signalling; once the root dies its children are orphaned
        self._members = self._descendants()
        try:
            os.killpg(self._pgid, signum)
        except ProcessLookupError:
            pass


def _is_zombie(proc: psutil.Process) -> bool:
    try:
        return proc.status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True
