"""
Rebuild supervisor - keeps a long-running program in step with its build.

Owns the program's process group, rebuilds its target on every detected
change and notifies the program over stdin or with a signal.
"""

from .command import Command, NotifyCommand, SignalCommand, new_command
from .errors import NotificationWriteFailure, StartupFailure, SupervisorError
from .models import TerminationPolicy

__version__ = "0.1.0"
