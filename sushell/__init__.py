"""sushell - persistent (root) shell sessions over raw pipes."""

from .builder import ShellBuilder
from .datastructures import Job, ShellFlag, ShellStatus
from .errors import (
    HandshakeTimeoutError,
    NoShellError,
    NotAShellError,
    PidParseError,
    ShellError,
    ShellInitError,
    ShellTerminatedError,
    SpawnError,
)
from .executor import SerialExecutor
from .process import LocalProcess, ShellFactory, default_factories
from .session import ShellSession
from .ssh import SSHProcess, SSHShellFactory

__all__ = [
    "ShellBuilder",
    "ShellSession",
    "ShellFactory",
    "SSHShellFactory",
    "LocalProcess",
    "SSHProcess",
    "SerialExecutor",
    "Job",
    "ShellFlag",
    "ShellStatus",
    "default_factories",
    "ShellError",
    "ShellInitError",
    "SpawnError",
    "NotAShellError",
    "PidParseError",
    "HandshakeTimeoutError",
    "ShellTerminatedError",
    "NoShellError",
]
