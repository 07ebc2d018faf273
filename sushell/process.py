"""Spawn boundary: factories that start candidate shell processes."""
import logging
import os
import shlex
import signal
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .datastructures import Initializer, ShellFlag
from .errors import SpawnError


class LocalProcess:
    """A shell started with ``subprocess`` on this host."""

    REAP_TIMEOUT = 5

    def __init__(self, commands: Sequence[str]):
        try:
            self._popen = subprocess.Popen(
                list(commands),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Unable to execute {shlex.join(commands)}: {e}") from e

        self.stdin = self._popen.stdin
        self.stdout = self._popen.stdout
        self.stderr = self._popen.stderr

    @property
    def pid(self) -> int:
        return self._popen.pid

    def poll(self) -> Optional[int]:
        """Exit code if the process has exited, else None. Never blocks."""
        return self._popen.poll()

    def wait(self, timeout: Optional[float] = None) -> int:
        return self._popen.wait(timeout)

    def kill(self):
        """Kill the shell's process group and reap the shell.

        Children the shell started share its group, so none of them keeps
        the stdout pipe open after this returns.
        """
        logger = logging.getLogger('sushell.process')
        # Not reaped yet, so the group id still belongs to this shell
        if self._popen.returncode is None:
            try:
                os.killpg(self._popen.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            except PermissionError:
                try:
                    self._popen.kill()
                except OSError as e:
                    logger.warning(f"Unable to kill process {self._popen.pid}: {e}")
        try:
            self._popen.wait(timeout=self.REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(f"[REAP_TIMEOUT] Process {self._popen.pid} still running {self.REAP_TIMEOUT}s after kill")

    def __repr__(self):
        return f"LocalProcess(pid={self._popen.pid}, args={self._popen.args!r})"


@dataclass
class ShellFactory:
    """A spawn strategy: the command vector plus the initializers that vet it."""
    commands: List[str]
    initializers: List[Initializer] = field(default_factory=list)

    def __post_init__(self):
        self.commands = list(self.commands)
        if not self.commands:
            raise ValueError("A shell factory needs at least one command")

    @classmethod
    def create(cls, *commands: str, initializers: Optional[List[Initializer]] = None) -> "ShellFactory":
        return cls(list(commands), list(initializers or []))

    def spawn(self):
        return LocalProcess(self.commands)

    def describe(self) -> str:
        return shlex.join(self.commands)


def default_factories(flags: ShellFlag = ShellFlag.NONE,
                      initializers: Optional[List[Initializer]] = None) -> List[ShellFactory]:
    """Ordered fallback candidates: su (with mount master if asked), then sh."""
    logger = logging.getLogger('sushell.process')
    candidates: List[List[str]] = []
    if not flags & ShellFlag.NON_ROOT_SHELL:
        if flags & ShellFlag.MOUNT_MASTER:
            candidates.append(["su", "--mount-master"])
        candidates.append(["su"])
    candidates.append(["sh"])
    logger.debug(f"Default candidates for flags={flags!r}: {candidates}")
    return [ShellFactory(commands, list(initializers or [])) for commands in candidates]
