"""Thread-safe byte buffers and the shared output sink.

StreamBuffer and OutputBuffer collect bytes that would otherwise go to the
real standard streams, mainly so tests can assert on passthrough output.

OutputSink is the single place passthrough bytes are written. It owns the
lock that keeps concurrent sessions from interleaving mid-chunk; create one
and hand it to every Capturer that shares the same terminal.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import IO, Any

from .options import Channel

__all__ = [
    "OutputBuffer",
    "OutputSink",
    "StreamBuffer",
]

logger = logging.getLogger(__name__)


class StreamBuffer:
    """Byte accumulator guarded by a lock."""

    def __init__(self) -> None:
        self._data = bytearray()
        self._lock = threading.Lock()

    def append(self, data: bytes, channel: Channel | None = None) -> None:
        """Append bytes. ``channel`` is accepted for composite buffers."""
        with self._lock:
            self._data += data

    def read(self) -> bytes:
        """Return everything buffered so far and clear the buffer."""
        with self._lock:
            data = bytes(self._data)
            self._data.clear()
        return data

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(size={len(self)})"


class OutputBuffer(StreamBuffer):
    """Buffer that also keeps a per-channel copy of what was appended.

    Attributes:
        out: Bytes appended for stdout
        err: Bytes appended for stderr
    """

    def __init__(self) -> None:
        super().__init__()
        self.out = StreamBuffer()
        self.err = StreamBuffer()

    def append(self, data: bytes, channel: Channel | None = None) -> None:
        if channel is Channel.OUT:
            self.out.append(data)
        elif channel is Channel.ERR:
            self.err.append(data)
        super().append(data)

    def read(self, drain_all: bool = True) -> bytes:
        """Read the combined buffer.

        Args:
            drain_all: Also clear the per-channel buffers
        """
        if drain_all:
            self.out.clear()
            self.err.clear()
        return super().read()

    def clear(self, all: bool = True) -> None:  # noqa: A002 - mirrors read(drain_all)
        if all:
            self.out.clear()
            self.err.clear()
        super().clear()


class OutputSink:
    """Destination for passthrough bytes.

    Each channel goes to its redirect buffer when one is set, otherwise to
    the current ``sys.stdout`` / ``sys.stderr``. Every write happens under
    one lock and is flushed before the lock is released.

    Example:
        buffer = OutputBuffer()
        sink = OutputSink.redirected(buffer)
        capturer = Capturer(sink=sink)
    """

    def __init__(
        self,
        lock: Any | None = None,
        stdout_buffer: StreamBuffer | None = None,
        stderr_buffer: StreamBuffer | None = None,
    ) -> None:
        """Create a sink.

        Args:
            lock: Any context-manager lock; defaults to a new ``threading.RLock``
            stdout_buffer: Redirect target for stdout passthrough
            stderr_buffer: Redirect target for stderr passthrough
        """
        self.lock = lock if lock is not None else threading.RLock()
        self.stdout_buffer = stdout_buffer
        self.stderr_buffer = stderr_buffer

    @classmethod
    def redirected(cls, buffer: StreamBuffer, lock: Any | None = None) -> "OutputSink":
        """Sink that sends both channels into one buffer."""
        return cls(lock=lock, stdout_buffer=buffer, stderr_buffer=buffer)

    def buffer_for(self, channel: Channel) -> StreamBuffer | None:
        return self.stdout_buffer if channel is Channel.OUT else self.stderr_buffer

    def write(self, channel: Channel, data: bytes) -> None:
        if not data:
            return
        with self.lock:
            buffer = self.buffer_for(channel)
            if buffer is not None:
                buffer.append(data, channel)
                return
            stream = sys.stdout if channel is Channel.OUT else sys.stderr
            self._write_stream(stream, data)

    @staticmethod
    def _write_stream(stream: IO[Any] | None, data: bytes) -> None:
        if stream is None:
            # pythonw and some daemons run without standard streams
            return
        binary = getattr(stream, "buffer", None)
        if binary is not None:
            # Text layer may hold unflushed text written by print()
            stream.flush()
            binary.write(data)
            binary.flush()
        else:
            stream.write(data.decode(getattr(stream, "encoding", None) or "utf-8", errors="replace"))
            stream.flush()
