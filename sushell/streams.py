"""Stream wrappers lent to tasks without letting them close the pipes.

A task gets the session's stdin/stdout/stderr for the duration of one
call. Closing them there would sever the long-lived shell, so ``close``
is a no-op (or a flush for stdin) and only the session calls
``hard_close`` during teardown.
"""
import io
import select
from typing import Callable, Optional

CHUNK_SIZE = 8192


def _select_ready(raw) -> bool:
    """Non-blocking readiness check for anything with a file descriptor."""
    readable, _, _ = select.select([raw], [], [], 0)
    return bool(readable)


class NoCloseInputStream:
    """Buffered byte reader over a raw pipe or channel.

    ``raw.read(n)`` must block until at least one byte is available and
    return ``b''`` at end of stream. Readiness comes from ``raw.ready()``
    when the raw object has one, otherwise from ``select`` on its fd.
    """

    def __init__(self, raw, ready: Optional[Callable[[], bool]] = None):
        self._raw = raw
        self._buffer = bytearray()
        if ready is None:
            ready = getattr(raw, 'ready', None)
        if ready is None:
            ready = lambda: _select_ready(raw)
        self._ready = ready

    @property
    def raw(self):
        return self._raw

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            chunks = [bytes(self._buffer)]
            self._buffer.clear()
            while True:
                chunk = self._raw.read(CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
            return b"".join(chunks)

        if not self._buffer:
            return self._raw.read(size) or b""
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def readline(self) -> bytes:
        """Read through the next newline; returns b'' only at end of stream."""
        while True:
            index = self._buffer.find(b"\n")
            if index >= 0:
                line = bytes(self._buffer[:index + 1])
                del self._buffer[:index + 1]
                return line
            chunk = self._raw.read(CHUNK_SIZE)
            if not chunk:
                line = bytes(self._buffer)
                self._buffer.clear()
                return line
            self._buffer.extend(chunk)

    def __iter__(self):
        return self

    def __next__(self) -> bytes:
        line = self.readline()
        if not line:
            raise StopIteration
        return line

    def available(self) -> bool:
        """Whether a read would return without blocking."""
        return bool(self._buffer) or self._ready()

    def discard_available(self) -> int:
        """Drop whatever is buffered or already sitting in the pipe."""
        dropped = len(self._buffer)
        self._buffer.clear()
        while self._ready():
            chunk = self._raw.read(CHUNK_SIZE)
            if not chunk:
                break
            dropped += len(chunk)
        return dropped

    def close(self):
        pass

    def hard_close(self):
        self._buffer.clear()
        self._raw.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class NoCloseOutputStream:
    """Buffered writer whose ``close`` only flushes."""

    def __init__(self, raw):
        if isinstance(raw, io.BufferedIOBase):
            self._out = raw
        else:
            self._out = io.BufferedWriter(raw)

    def write(self, data: bytes) -> int:
        return self._out.write(data)

    def writelines(self, lines):
        for line in lines:
            self._out.write(line)

    def flush(self):
        self._out.flush()

    def close(self):
        self._out.flush()

    def hard_close(self):
        self._out.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
