"""Builds a shell session by trying candidate factories in order."""
import logging
from typing import Any, List, Optional, Tuple

from .datastructures import ExceptionHandler, ShellFlag
from .errors import NoShellError, ShellError
from .logging_manager import get_logger
from .process import ShellFactory, default_factories
from .session import ShellSession


class ShellBuilder:
    """Creates the first usable shell out of an ordered list of factories.

    A candidate wins when it spawns, passes the handshake and every one
    of its initializers accepts it. Failed candidates are reported to the
    exception handler; rejected ones are closed and skipped.
    """

    # Handshake timeout in seconds
    DEFAULT_TIMEOUT = 20

    def __init__(self, *factories: ShellFactory,
                 timeout: Optional[float] = DEFAULT_TIMEOUT,
                 flags: ShellFlag = ShellFlag.NONE,
                 context: Any = None,
                 exception_handler: Optional[ExceptionHandler] = None,
                 logger: Optional[logging.Logger] = None):
        self.factories: List[ShellFactory] = list(factories)
        self.timeout = timeout
        self.flags = ShellFlag(flags)
        self.context = context
        base_logger = logger or get_logger()
        self.logger = base_logger.getChild('builder')
        self._session_logger = base_logger.getChild('session')
        self.exception_handler = exception_handler or self._log_exception

    def add_factory(self, factory: ShellFactory) -> "ShellBuilder":
        self.factories.append(factory)
        return self

    def _log_exception(self, factory: ShellFactory, exc: BaseException) -> None:
        self.logger.warning(f"[BUILD_FAIL] {factory.describe()}: {type(exc).__name__}: {exc}",
                            exc_info=exc)

    def _candidates(self) -> List[ShellFactory]:
        return self.factories or default_factories(self.flags)

    def _try_factory(self, factory: ShellFactory) -> Tuple[Optional[ShellSession], Optional[BaseException]]:
        """Attempt one candidate.

        Returns (session, None) on success, (None, error) when it failed and
        (None, None) when an initializer rejected it.
        """
        logger = self.logger.getChild('try_factory')
        try:
            session = ShellSession.create(factory, self.timeout, self.flags, self._session_logger)
        except Exception as e:
            return None, e

        for initializer in factory.initializers:
            try:
                accepted = initializer(self.context, session)
            except Exception as e:
                session.close()
                return None, e
            if not accepted:
                logger.info(f"[BUILD_REJECT] {factory.describe()} rejected by {initializer!r}")
                session.close()
                return None, None
        return session, None

    def build(self, *commands: str) -> ShellSession:
        """Return the first accepted session.

        With explicit ``commands`` only that one candidate is tried, with
        no initializers and no fallback.
        """
        logger = self.logger.getChild('build')
        if commands:
            factory = ShellFactory(list(commands))
            try:
                return ShellSession.create(factory, self.timeout, self.flags, self._session_logger)
            except ShellError as e:
                logger.error(f"[BUILD_FAIL] {factory.describe()}: {e}")
                raise NoShellError("Unable to create a shell!") from e

        for factory in self._candidates():
            logger.debug(f"[BUILD_TRY] {factory.describe()}")
            session, error = self._try_factory(factory)
            if session is not None:
                logger.info(f"[BUILD_OK] {session!r}")
                return session
            if error is not None:
                self.exception_handler(factory, error)
        raise NoShellError("Unable to create shell!")
