"""Event model for one process session.

A session emits, in order on one delivery context:

- zero or more OutputChunk events for captured channels
- exactly one Terminated event, after the child exited and both channels
  were drained

Events are immutable pydantic models; ``kind`` is the discriminator.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from .errors import ReadError
from .launcher import ProcessHandle
from .options import Channel

__all__ = [
    "OutputChunk",
    "ProcessEvent",
    "Terminated",
]


class _EventBase(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )

    process: ProcessHandle


class OutputChunk(_EventBase):
    """Bytes read from one channel.

    An empty chunk with ``error_code == 0`` marks end of file. A nonzero
    ``error_code`` marks a failed read; it also ends that channel.

    Attributes:
        channel: Channel the bytes came from
        data: The bytes, exactly as read
        error_code: 0, or the errno of the failed read
    """

    kind: Literal["output"] = "output"
    channel: Channel
    data: bytes = b""
    error_code: int = 0

    @property
    def is_eof(self) -> bool:
        return not self.data and self.error_code == 0

    @property
    def is_error(self) -> bool:
        return self.error_code != 0

    @property
    def is_final(self) -> bool:
        """True for the last chunk a channel will ever produce."""
        return self.is_eof or self.is_error

    def raise_for_error(self) -> None:
        if self.is_error:
            raise ReadError(self.channel, self.error_code)

    def text(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        return self.data.decode(encoding, errors)

    def __repr__(self) -> str:
        return (
            f"OutputChunk(channel={self.channel.value}, size={len(self.data)}, "
            f"error_code={self.error_code}, pid={self.process.pid})"
        )


class Terminated(_EventBase):
    """The session finished. Always the last event."""

    kind: Literal["terminated"] = "terminated"

    @property
    def exit_code(self) -> int | None:
        return self.process.exit_code

    def __repr__(self) -> str:
        return f"Terminated(pid={self.process.pid}, exit_code={self.exit_code})"


ProcessEvent = OutputChunk | Terminated
