"""Data structures for shell session management."""
from abc import ABC, abstractmethod
from enum import IntEnum, IntFlag
from typing import Any, Callable


class ShellStatus(IntEnum):
    """Privilege level of a session, determined by the handshake.

    ``UNKNOWN`` covers both "not yet handshaked" and "torn down";
    ``TERMINATED`` is an alias of it. Anything below zero is not usable.
    """
    UNKNOWN = -1
    TERMINATED = -1
    NON_ROOT = 0
    ROOT = 1
    ROOT_PRIVILEGED = 2


class ShellFlag(IntFlag):
    NONE = 0
    NON_ROOT_SHELL = 1  # Never try su
    MOUNT_MASTER = 2    # Ask su for the global mount namespace


class Job(ABC):
    """A unit of work submitted to a session's queue.

    ``run`` executes on the session worker and typically calls
    ``ShellSession.execute_task`` one or more times. Its return value is
    the job's result.
    """

    @abstractmethod
    def run(self) -> Any:
        ...


# task(stdin, stdout, stderr) -> result
Task = Callable[[Any, Any, Any], Any]

# initializer(context, session) -> accepted
Initializer = Callable[[Any, Any], bool]

ResultCallback = Callable[[Any], None]

# handler(factory, exception)
ExceptionHandler = Callable[[Any, BaseException], None]
