"""Background reader for one output channel.

Each StreamReader owns a daemon thread that issues blocking reads on the
channel's pipe. Every read result is handed to the delivery executor and the
thread waits for that callback to return before reading again, so:

- chunks of one channel are delivered in exact read order
- a slow consumer applies backpressure to the pipe instead of queueing
  unbounded memory
- with a single-thread delivery executor both channels are serialized in
  true arrival order

The last callback is always either ``(b"", 0)`` (end of file) or
``(b"", errno)`` (read failure). Nothing follows it.
"""

from __future__ import annotations

import errno
import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Executor
from typing import IO

from .config import DEFAULT_READ_SIZE
from .options import Channel

__all__ = [
    "ChunkCallback",
    "StreamReader",
]

logger = logging.getLogger(__name__)

# (data, error_code)
ChunkCallback = Callable[[bytes, int], None]


class StreamReader:
    """Drains one pipe on a background thread.

    Attributes:
        channel: Channel this reader drains
        read_size: Maximum bytes per read
        done: Set once the final callback has returned
    """

    def __init__(
        self,
        source: IO[bytes],
        channel: Channel,
        on_chunk: ChunkCallback,
        executor: Executor,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.channel = channel
        self.read_size = read_size
        self.done = threading.Event()
        self._source = source
        self._on_chunk = on_chunk
        self._executor = executor
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start reading. Returns immediately."""
        if self._thread is not None:
            raise RuntimeError(f"reader for std{self.channel.value} already started")
        self._thread = threading.Thread(
            target=self._run,
            name=f"streamcap-read-{self.channel.value}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the reader to finish. Returns False on timeout."""
        return self.done.wait(timeout)

    def _run(self) -> None:
        try:
            while True:
                try:
                    data = os.read(self._source.fileno(), self.read_size)
                except (OSError, ValueError) as e:
                    # ValueError: source was closed under us
                    code = getattr(e, "errno", None) or errno.EBADF
                    logger.debug(f"Read on std{self.channel.value} failed: {e}")
                    self._deliver(b"", code)
                    return
                self._deliver(data, 0)
                if not data:
                    return
        finally:
            self.done.set()

    def _deliver(self, data: bytes, error_code: int) -> None:
        try:
            future = self._executor.submit(self._invoke, data, error_code)
        except RuntimeError as e:
            # Caller shut its executor down early; still drain the pipe
            logger.warning(f"Delivery executor unavailable ({e}), delivering inline")
            self._invoke(data, error_code)
            return
        future.result()

    def _invoke(self, data: bytes, error_code: int) -> None:
        try:
            self._on_chunk(data, error_code)
        except Exception:
            logger.exception(f"Chunk handler for std{self.channel.value} raised")
