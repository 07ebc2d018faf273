"""Exceptions raised by shell sessions and the session builder."""


class ShellError(Exception):
    """Base class for all shell session errors."""


class ShellInitError(ShellError):
    """A candidate session could not be brought up."""


class SpawnError(ShellInitError):
    """The shell process could not be created."""


class NotAShellError(ShellInitError):
    """The spawned process did not echo the test token back."""


class PidParseError(ShellInitError):
    """The shell did not report a usable process id."""


class HandshakeTimeoutError(ShellInitError):
    """The handshake did not finish before the deadline."""


class ShellTerminatedError(ShellError):

    def __init__(self, message: str = "Shell terminated unexpectedly"):
        super().__init__(message)


class NoShellError(ShellError):
    """No candidate produced a usable shell."""
