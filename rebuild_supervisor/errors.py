"""Exceptions raised and logged by the supervisors."""


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class StartupFailure(SupervisorError):
    """The subprocess group could not be spawned or wired up.

    ``output`` holds whatever build output was captured before the failure so
    the caller can still display it.
    """

    def __init__(self, message: str, output: bytes = b""):
        super().__init__(message)
        self.output = output


class NotificationWriteFailure(SupervisorError):
    """A protocol line could not be written to the subprocess's stdin."""

    def __init__(self, line: str, cause: BaseException):
        super().__init__(f"Error writing {line.strip()!r} to stdin: {cause}")
        self.line = line
        self.cause = cause
