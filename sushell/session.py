"""A long-lived shell process driven through serialized tasks."""
import asyncio
import logging
import threading
from concurrent.futures import CancelledError, Executor, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, List, Optional

from .datastructures import Job, ResultCallback, ShellFlag, ShellStatus, Task
from .errors import (
    HandshakeTimeoutError,
    NotAShellError,
    PidParseError,
    ShellInitError,
    ShellTerminatedError,
)
from .executor import SerialExecutor
from .logging_manager import get_logger
from .process import ShellFactory
from .streams import NoCloseInputStream, NoCloseOutputStream


class ShellSession:
    """Owns one spawned shell, its three pipes and its task queue.

    Every read and write against the pipes runs on the session's single
    worker thread, in submission order.
    """

    SHELL_TEST_TOKEN = "SHELL_TEST"
    MOUNT_MASTER_ARG = "--mount-master"

    def __init__(self, factory: ShellFactory, flags: ShellFlag = ShellFlag.NONE,
                 logger: Optional[logging.Logger] = None):
        """Spawn the shell. The handshake runs separately in ``start``."""
        self.logger = logger or get_logger().getChild('session')
        self._factory = factory
        self._flags = ShellFlag(flags)
        self._status = ShellStatus.UNKNOWN
        self._pid = 0
        self._released = False
        self._state_lock = threading.Lock()

        commands = list(factory.commands)
        self.logger.info(f"[SHELL_SPAWN] exec {factory.describe()}")
        self._process = factory.spawn()
        self._stdin = NoCloseOutputStream(self._process.stdin)
        self._stdout = NoCloseInputStream(self._process.stdout)
        self._stderr = NoCloseInputStream(self._process.stderr)
        self._executor = SerialExecutor(name="sushell", logger=self.logger.getChild('queue'))

        if len(commands) >= 2 and commands[1] == self.MOUNT_MASTER_ARG:
            self._status = ShellStatus.ROOT_PRIVILEGED

    @classmethod
    def create(cls, factory: ShellFactory, timeout: Optional[float],
               flags: ShellFlag = ShellFlag.NONE,
               logger: Optional[logging.Logger] = None) -> "ShellSession":
        """Spawn and handshake; the session is torn down if either fails."""
        session = cls(factory, flags, logger)
        session.start(timeout)
        return session

    def start(self, timeout: Optional[float]) -> None:
        """Run the handshake as the first queued item and wait for it.

        On any failure the queue is stopped without draining and the
        process is killed, even if the handshake is still blocked.
        """
        logger = self.logger.getChild('handshake')
        check = self._executor.submit(self._handshake)
        try:
            try:
                check.result(timeout=timeout)
            except FutureTimeoutError as e:
                raise HandshakeTimeoutError(f"Shell timeout after {timeout}s") from e
            except CancelledError as e:
                raise ShellInitError("Shell initialization cancelled") from e
        except Exception as e:
            logger.warning(f"[HANDSHAKE_FAIL] {self._factory.describe()}: {type(e).__name__}: {e}")
            self._executor.stop_now()
            self._release()
            raise
        logger.info(f"[HANDSHAKE_OK] pid={self._pid} status={self._status.name}")

    def _exchange(self, command: bytes) -> Optional[str]:
        """Send one command line and read one line back.

        Returns None at end of stream.
        """
        try:
            self._stdin.write(command)
            self._stdin.flush()
            line = self._stdout.readline()
        except (OSError, ValueError) as e:
            raise ShellInitError(f"Shell I/O failed during handshake: {e}") from e
        if not line:
            return None
        return line.decode('utf-8', errors='replace').strip()

    def _handshake(self) -> None:
        # Spawners sometimes leave garbage behind
        self._stdout.discard_available()
        self._stderr.discard_available()

        line = self._exchange(f"echo {self.SHELL_TEST_TOKEN}\n".encode())
        if not line or self.SHELL_TEST_TOKEN not in line:
            raise NotAShellError("Created process is not a shell")

        line = self._exchange(b"echo $$\n")
        try:
            pid = int(line) if line else 0
        except ValueError:
            pid = 0
        if pid <= 0:
            raise PidParseError(f"Get process pid error: {line!r}")

        line = self._exchange(b"id\n")
        if not line:
            raise ShellInitError("Empty identity response")
        status = ShellStatus.ROOT if "uid=0" in line else ShellStatus.NON_ROOT
        if status is ShellStatus.ROOT and self._status is ShellStatus.ROOT_PRIVILEGED:
            status = ShellStatus.ROOT_PRIVILEGED

        with self._state_lock:
            if self._released:
                raise ShellTerminatedError()
            self._pid = pid
            self._status = status

    @property
    def status(self) -> ShellStatus:
        return self._status

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def flags(self) -> ShellFlag:
        return self._flags

    @property
    def factory(self) -> ShellFactory:
        return self._factory

    @property
    def commands(self) -> List[str]:
        return list(self._factory.commands)

    def is_alive(self) -> bool:
        if self._status < 0:
            return False
        return self._process.poll() is None

    def execute_task(self, task: Task) -> Any:
        """Run ``task(stdin, stdout, stderr)`` with exclusive stream access.

        Outside the worker the task is queued behind earlier work and this
        call blocks until it returns. A single newline is written first; if
        that fails the shell is gone and the session is torn down.
        """
        if self._status < 0:
            raise ShellTerminatedError()

        if not self._executor.in_worker():
            try:
                future = self._executor.submit(self.execute_task, task)
            except RuntimeError:
                raise ShellTerminatedError() from None
            try:
                return future.result()
            except CancelledError:
                raise ShellTerminatedError() from None

        if self._status < 0:
            raise ShellTerminatedError()

        self._stdout.discard_available()
        self._stderr.discard_available()
        try:
            self._stdin.write(b"\n")
            self._stdin.flush()
        except (OSError, ValueError) as e:
            self.logger.getChild('execute_task').warning(f"[SHELL_DEAD] Liveness write failed: {e}")
            self._executor.stop_now()
            self._release()
            raise ShellTerminatedError() from None

        return task(self._stdin, self._stdout, self._stderr)

    def submit_job(self, job: Job, executor: Optional[Executor] = None,
                   callback: Optional[ResultCallback] = None) -> Future:
        """Queue ``job`` and return a future for its result.

        If ``callback`` is given the result is also handed to it, on
        ``executor`` when one is given, otherwise on the worker thread.
        """
        try:
            return self._executor.submit(self._run_job, job, executor, callback)
        except RuntimeError:
            raise ShellTerminatedError() from None

    def _run_job(self, job: Job, executor: Optional[Executor],
                 callback: Optional[ResultCallback]) -> Any:
        result = job.run()
        if callback is None:
            return result
        if executor is not None:
            try:
                executor.submit(callback, result)
            except RuntimeError as e:
                self.logger.getChild('submit_job').error(f"[CALLBACK_ERROR] Delivery executor rejected callback: {e}")
            return result
        try:
            callback(result)
        except Exception as e:
            self.logger.getChild('submit_job').error(f"[CALLBACK_ERROR] {e}", exc_info=True)
        return result

    async def run_job(self, job: Job) -> Any:
        """Await a job's result from asyncio code."""
        return await asyncio.wrap_future(self.submit_job(job))

    async def run_task(self, task: Task) -> Any:
        if self._status < 0:
            raise ShellTerminatedError()
        try:
            future = self._executor.submit(self.execute_task, task)
        except RuntimeError:
            raise ShellTerminatedError() from None
        return await asyncio.wrap_future(future)

    def _release(self) -> None:
        logger = self.logger.getChild('release')
        with self._state_lock:
            self._status = ShellStatus.UNKNOWN
            if self._released:
                return
            self._released = True

        logger.debug(f"Releasing shell resources for {self._factory.describe()}")
        try:
            self._stdin.hard_close()
        except (OSError, ValueError) as e:
            logger.debug(f"Error closing stdin: {e}")
        self._process.kill()
        for name, stream in (('stderr', self._stderr), ('stdout', self._stdout)):
            try:
                stream.hard_close()
            except (OSError, ValueError) as e:
                logger.warning(f"Error closing {name}: {e}")
        logger.info(f"Shell released (pid={self._pid})")

    def close(self) -> None:
        """Cancel queued work and release the shell without waiting."""
        if self._released:
            return
        self.logger.getChild('close').info(f"Closing shell (pid={self._pid})")
        self._executor.stop_now()
        self._release()

    def wait_and_close(self, timeout: Optional[float]) -> bool:
        """Let queued work finish, then release the shell.

        Returns False if the queue did not drain within ``timeout`` seconds;
        the session is then unusable but its process is left running until
        ``close`` is called.
        """
        if self._status < 0:
            return True
        if self._executor.drain_and_stop(timeout):
            self._release()
            return True
        self._status = ShellStatus.UNKNOWN
        return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"ShellSession(commands={self.commands!r}, pid={self._pid}, status={self._status.name})"
