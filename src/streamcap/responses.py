"""Response types and the built-in parsers.

A parser turns the result of a session into a response:

    parser(exit_code, capture, chunks) -> response

``chunks`` holds every captured OutputChunk in arrival order, both channels
interleaved. Any callable with that signature can be used with
``Capturer.capture_response``; the two below cover raw bytes and UTF-8 text.
"""

from __future__ import annotations

import codecs
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from .events import OutputChunk
from .options import Channel, Channels

__all__ = [
    "BytesResponse",
    "CapturedResponse",
    "ResponseParser",
    "StringResponse",
    "parse_bytes",
    "parse_string",
]

T = TypeVar("T")

ResponseParser = Callable[[int, Channels, Sequence[OutputChunk]], T]


class CapturedResponse(BaseModel):
    """Common part of every built-in response.

    Attributes:
        exit_code: Exit status of the child
        capture: Channels that were captured
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    exit_code: int
    capture: Channels

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class BytesResponse(CapturedResponse):
    """Raw captured bytes."""

    chunks: tuple[OutputChunk, ...] = ()

    def _join(self, channel: Channel | None) -> bytes | None:
        if channel is not None and channel not in self.capture:
            return None
        if channel is None and self.capture is Channels.NONE:
            return None
        return b"".join(
            chunk.data for chunk in self.chunks if channel is None or chunk.channel is channel
        )

    @property
    def out(self) -> bytes | None:
        """Everything captured from stdout, or None if stdout was not captured."""
        return self._join(Channel.OUT)

    @property
    def err(self) -> bytes | None:
        return self._join(Channel.ERR)

    @property
    def output(self) -> bytes | None:
        """Captured channels in arrival order, None when nothing was captured."""
        return self._join(None)


class StringResponse(CapturedResponse):
    """Captured output decoded as UTF-8.

    Attributes:
        out: Decoded stdout, None when stdout was not captured
        err: Decoded stderr, None when stderr was not captured
        output: Captured channels interleaved in arrival order. Set whenever
            at least one channel was captured, so with a single captured
            channel it equals that channel's text. None only when nothing
            was captured.
    """

    out: str | None = None
    err: str | None = None
    output: str | None = None


def parse_bytes(
    exit_code: int, capture: Channels, chunks: Sequence[OutputChunk]
) -> BytesResponse:
    return BytesResponse(exit_code=exit_code, capture=capture, chunks=tuple(chunks))


def parse_string(
    exit_code: int, capture: Channels, chunks: Sequence[OutputChunk]
) -> StringResponse:
    """Decode captured output as strict UTF-8.

    Decoding is incremental per channel, so a character split across two
    reads decodes correctly.

    Raises:
        UnicodeDecodeError: If a channel holds invalid UTF-8
    """
    decoders: dict[Channel, Any] = {
        channel: codecs.getincrementaldecoder("utf-8")("strict") for channel in Channel
    }
    parts: dict[Channel, list[str]] = {channel: [] for channel in Channel}
    output: list[str] = []

    for chunk in chunks:
        text = decoders[chunk.channel].decode(chunk.data)
        if text:
            parts[chunk.channel].append(text)
            output.append(text)
    for channel, decoder in decoders.items():
        tail = decoder.decode(b"", final=True)
        if tail:
            parts[channel].append(tail)
            output.append(tail)

    return StringResponse(
        exit_code=exit_code,
        capture=capture,
        out="".join(parts[Channel.OUT]) if Channel.OUT in capture else None,
        err="".join(parts[Channel.ERR]) if Channel.ERR in capture else None,
        output="".join(output) if capture is not Channels.NONE else None,
    )
