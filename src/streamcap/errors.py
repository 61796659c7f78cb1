"""Exception taxonomy for streamcap.

- LaunchError: the child could not be created. Raised synchronously by every
  entry point before any event is delivered.
- ReadError: a channel read failed. Recorded in the OutputChunk; only raised
  when a caller asks for it via ``OutputChunk.raise_for_error()``.
- ParseError: a response parser failed. Delivered through the completion
  callback, re-raised by the blocking and awaitable adapters.
- ProcessTimeoutError: a blocking or awaitable call ran out of time. The child
  has been killed by the time it is raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .launcher import ProcessHandle
    from .options import Channel

__all__ = [
    "CaptureError",
    "LaunchError",
    "ParseError",
    "ProcessTimeoutError",
    "ReadError",
]


class CaptureError(Exception):
    """Base class for all streamcap errors."""


class LaunchError(CaptureError):
    """Raised when the child process could not be started."""

    def __init__(self, arguments: Sequence[str], message: str) -> None:
        self.arguments = list(arguments)
        super().__init__(f"failed to launch {self.arguments!r}: {message}")


class ReadError(CaptureError):
    """A read on one output channel failed."""

    def __init__(self, channel: "Channel", error_code: int) -> None:
        self.channel = channel
        self.error_code = error_code
        super().__init__(f"read on std{channel.value} failed with error code {error_code}")


class ParseError(CaptureError):
    """The response parser raised while building a response."""


class ProcessTimeoutError(CaptureError, TimeoutError):
    """The child did not finish before the deadline and was killed."""

    def __init__(self, process: "ProcessHandle", timeout: float | None) -> None:
        self.process = process
        self.timeout = timeout
        super().__init__(
            f"process pid={process.pid} did not finish within {timeout}s and was killed"
        )
