import os
import time

import pytest
from rebuild_supervisor.models import BuildResult
from rebuild_supervisor.process_group import ProcessGroup


class FakeStdin:
    """Write end of a stdin pipe that records what was written."""

    def __init__(self):
        self.data = b""
        self.broken = False
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed file")
        if self.broken:
            raise BrokenPipeError(32, "Broken pipe")
        self.data += data
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True

    @property
    def lines(self) -> list[str]:
        return self.data.decode("utf-8").splitlines()


class FakeRootProcess:
    def __init__(self, args):
        self.args = list(args)
        self.env = None
        self.alive = False
        self.stdin = None
        self.stdin_error = None

    def stdin_pipe(self):
        if self.stdin_error:
            raise self.stdin_error
        self.stdin = FakeStdin()
        return self.stdin

    def is_alive(self) -> bool:
        return self.alive


class FakeProcessGroup(ProcessGroup):
    """Process group that records calls instead of spawning anything."""

    def __init__(self, path, *args, start_error=None, refresh_error=None):
        self.root = FakeRootProcess([path, *args])
        self.calls = []
        self.start_error = start_error
        self.refresh_error = refresh_error

    def root_process(self):
        return self.root

    def start(self):
        self.calls.append("start")
        if self.start_error:
            raise self.start_error
        self.root.alive = True

    def kill(self):
        self.calls.append("kill")
        self.root.alive = False

    def terminate(self):
        self.calls.append("terminate")
        self.root.alive = False

    def wait(self):
        self.calls.append("wait")

    def close(self):
        self.calls.append("close")
        if self.root.stdin is not None:
            self.root.stdin.close()

    def refresh_signal(self):
        self.calls.append("refresh_signal")
        if self.refresh_error:
            raise self.refresh_error


class BuildRecorder:
    """Shared state of every FakeBuilder created for one test."""

    def __init__(self):
        self.builds = []
        self.runs = []
        self.builders = []
        self.success = True
        self.run_script = None

    def factory(self):
        builder = FakeBuilder(self)
        self.builders.append(builder)
        return builder


class FakeBuilder:
    def __init__(self, recorder: BuildRecorder):
        self.recorder = recorder
        self.startup_args = None
        self.args = None
        self.stdout = False
        self.stderr = False

    def set_startup_args(self, args):
        self.startup_args = list(args)

    def set_arguments(self, args):
        self.args = list(args)

    def write_to_stdout(self, enabled):
        self.stdout = enabled

    def write_to_stderr(self, enabled):
        self.stderr = enabled

    def build(self, target):
        self.recorder.builds.append(target)
        if self.recorder.success:
            return BuildResult(output=b"build ok", returncode=0)
        return BuildResult(output=b"build broken", returncode=1, error="build exited with status 1")

    def run(self, target, script_path):
        self.recorder.runs.append((target, script_path))
        if self.recorder.run_script is not None:
            with open(script_path, "w") as f:
                f.write(self.recorder.run_script)
            # mkstemp creates the file with mode 0600
            os.chmod(script_path, 0o755)
        return BuildResult(output=b"run output", returncode=0)


class GroupFactory:
    def __init__(self):
        self.groups = []
        self.start_error = None
        self.refresh_error = None

    def __call__(self, path, *args):
        group = FakeProcessGroup(
            path, *args, start_error=self.start_error, refresh_error=self.refresh_error
        )
        self.groups.append(group)
        return group

    @property
    def last(self) -> FakeProcessGroup:
        return self.groups[-1]


@pytest.fixture
def recorder():
    return BuildRecorder()


@pytest.fixture
def group_factory():
    return GroupFactory()


@pytest.fixture
def make_command(recorder, group_factory):
    """Build a command wired to the fake builder and process groups."""

    created = []

    def _make(command_class, target="//:app", **kwargs):
        kwargs.setdefault("builder_factory", recorder.factory)
        kwargs.setdefault("process_group_factory", group_factory)
        command = command_class(target, **kwargs)
        created.append(command)
        return command

    yield _make

    for command in created:
        command._release_process_group()


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return wait_for
