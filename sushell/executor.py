"""Single worker FIFO executor backing every shell session."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional, Set


class SerialExecutor:
    """Runs submitted work strictly in order, one item at a time.

    All items share the same shell streams, which carry no framing, so
    two items must never overlap. A one-thread pool gives both the FIFO
    order and the exclusivity.
    """

    def __init__(self, name: str = "sushell", logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('sushell.executor')
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=name,
            initializer=self._register_worker,
        )
        self._pending: Set[Future] = set()
        self._lock = threading.RLock()
        self._worker: Optional[threading.Thread] = None
        self._shutdown = False

    def _register_worker(self):
        self._worker = threading.current_thread()

    def _discard(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def in_worker(self) -> bool:
        """Whether the calling thread is this executor's worker."""
        return self._worker is not None and threading.current_thread() is self._worker

    def submit(self, fn, *args, **kwargs) -> Future:
        """Queue ``fn`` behind all previously submitted work.

        Raises RuntimeError once the executor has been stopped.
        """
        with self._lock:
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def execute(self, fn, *args, **kwargs) -> None:
        """Fire-and-forget variant of submit; failures are only logged."""
        future = self.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future: Future):
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.error(f"[QUEUE_ERROR] Unhandled error in queued work: {exc}", exc_info=exc)

    def drain_and_stop(self, timeout: Optional[float]) -> bool:
        """Stop accepting work and wait for queued and running items.

        Returns True if everything finished within ``timeout`` seconds.
        """
        with self._lock:
            self._shutdown = True
            self._executor.shutdown(wait=False)
            pending = list(self._pending)
        logger = self.logger.getChild('drain')
        logger.debug(f"Draining {len(pending)} queued items (timeout={timeout})")
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"[DRAIN_TIMEOUT] {len(not_done)} items still queued or running")
            return False
        return True

    def stop_now(self) -> None:
        """Stop accepting work and cancel everything not yet started.

        An item already running is left to finish on its own.
        """
        with self._lock:
            self._shutdown = True
            self._executor.shutdown(wait=False, cancel_futures=True)
