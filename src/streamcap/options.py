"""Output routing policy and per-run options.

A child has two output channels (stdout and stderr). For each one the caller
decides independently whether it is *captured* (delivered as OutputChunk
events) and whether it is *passed through* (written to the output sink).
A channel that is neither is still drained, to the null device.
"""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from enum import Enum, Flag
from pathlib import Path
from typing import ClassVar

from .launcher import StdinSource

__all__ = [
    "CaptureOptions",
    "Channel",
    "Channels",
    "RoutingPolicy",
]


class Channel(str, Enum):
    """One of the child's two output streams."""

    OUT = "out"
    ERR = "err"


class Channels(Flag):
    """Set of output channels."""

    NONE = 0
    OUT = 1
    ERR = 2
    ALL = OUT | ERR

    @classmethod
    def of(cls, channel: Channel) -> "Channels":
        return cls.OUT if channel is Channel.OUT else cls.ERR

    @classmethod
    def parse(cls, value: str) -> "Channels":
        """Parse ``out``, ``err``, ``all`` or ``none`` (case-insensitive)."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown channel set: {value!r}") from None

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Channel):
            item = Channels.of(item)
        return super().__contains__(item)

    def describe(self) -> str:
        if self is Channels.ALL:
            return "all"
        if self is Channels.NONE:
            return "none"
        return "out" if self is Channels.OUT else "err"


@dataclass(frozen=True)
class RoutingPolicy:
    """Per-channel capture and passthrough flags.

    Policies combine by union with ``|`` (or ``+``)::

        policy = RoutingPolicy.CAPTURE_OUT | RoutingPolicy.PASSTHROUGH_ERR

    Attributes:
        capture: Channels delivered as OutputChunk events
        passthrough: Channels written to the output sink
    """

    capture: Channels = Channels.NONE
    passthrough: Channels = Channels.NONE

    NONE: ClassVar["RoutingPolicy"]
    ALL: ClassVar["RoutingPolicy"]
    CAPTURE_OUT: ClassVar["RoutingPolicy"]
    CAPTURE_ERR: ClassVar["RoutingPolicy"]
    CAPTURE_ALL: ClassVar["RoutingPolicy"]
    PASSTHROUGH_OUT: ClassVar["RoutingPolicy"]
    PASSTHROUGH_ERR: ClassVar["RoutingPolicy"]
    PASSTHROUGH_ALL: ClassVar["RoutingPolicy"]

    def __or__(self, other: object) -> "RoutingPolicy":
        if not isinstance(other, RoutingPolicy):
            # A bare Channels value does not say whether it means capture or
            # passthrough, so it is not accepted here.
            return NotImplemented
        return RoutingPolicy(
            capture=self.capture | other.capture,
            passthrough=self.passthrough | other.passthrough,
        )

    __add__ = __or__

    def __contains__(self, other: object) -> bool:
        if not isinstance(other, RoutingPolicy):
            return False
        return (
            other.capture & self.capture == other.capture
            and other.passthrough & self.passthrough == other.passthrough
        )

    def captures(self, channel: Channel) -> bool:
        return channel in self.capture

    def passes_through(self, channel: Channel) -> bool:
        return channel in self.passthrough

    def needs_pipe(self, channel: Channel) -> bool:
        """Whether the channel has to be read at all (as opposed to /dev/null)."""
        return self.captures(channel) or self.passes_through(channel)

    @property
    def is_empty(self) -> bool:
        return self.capture is Channels.NONE and self.passthrough is Channels.NONE

    def capture_only(self) -> "RoutingPolicy":
        return RoutingPolicy(capture=self.capture)

    def passthrough_only(self) -> "RoutingPolicy":
        return RoutingPolicy(passthrough=self.passthrough)

    @classmethod
    def parse(cls, value: str) -> "RoutingPolicy":
        """Parse a policy description.

        Accepts comma separated items, each one of ``all``, ``none``,
        ``capture``, ``passthrough``, ``capture:<set>`` or
        ``passthrough:<set>`` where ``<set>`` is out, err, all or none.

        Raises:
            ValueError: On an unknown item
        """
        policy = cls.NONE
        for item in value.split(","):
            item = item.strip().lower()
            if not item or item == "none":
                continue
            if item == "all":
                policy = policy | cls.ALL
                continue
            kind, _, channels = item.partition(":")
            selected = Channels.parse(channels) if channels else Channels.ALL
            if kind == "capture":
                policy = policy | cls(capture=selected)
            elif kind == "passthrough":
                policy = policy | cls(passthrough=selected)
            else:
                raise ValueError(f"unknown routing item: {item!r}")
        return policy

    def __str__(self) -> str:
        if self.capture is Channels.ALL and self.passthrough is Channels.ALL:
            return "[all]"
        if self.is_empty:
            return "[none]"
        parts = []
        if self.passthrough is not Channels.NONE:
            parts.append("passthrough" + self.passthrough.describe().capitalize())
        if self.capture is not Channels.NONE:
            parts.append("capture" + self.capture.describe().capitalize())
        return "[" + " ".join(parts) + "]"


RoutingPolicy.NONE = RoutingPolicy()
RoutingPolicy.ALL = RoutingPolicy(capture=Channels.ALL, passthrough=Channels.ALL)
RoutingPolicy.CAPTURE_OUT = RoutingPolicy(capture=Channels.OUT)
RoutingPolicy.CAPTURE_ERR = RoutingPolicy(capture=Channels.ERR)
RoutingPolicy.CAPTURE_ALL = RoutingPolicy(capture=Channels.ALL)
RoutingPolicy.PASSTHROUGH_OUT = RoutingPolicy(passthrough=Channels.OUT)
RoutingPolicy.PASSTHROUGH_ERR = RoutingPolicy(passthrough=Channels.ERR)
RoutingPolicy.PASSTHROUGH_ALL = RoutingPolicy(passthrough=Channels.ALL)


@dataclass(frozen=True)
class CaptureOptions:
    """Everything about a run except the argument list.

    Attributes:
        environment: Variables merged over the parent environment
        working_directory: Working directory for the child
        stdin: None (null device), bytes/str to feed, or an fd/file object
        policy: Routing policy; None means the entry point's default
        executor: Delivery context for events; None means a private
            single-thread executor per session
        correlation_id: Identifier carried by the process handle and logs
    """

    environment: Mapping[str, str] | None = None
    working_directory: str | Path | None = None
    stdin: StdinSource = None
    policy: RoutingPolicy | None = None
    executor: Executor | None = None
    correlation_id: str | None = None

    def with_policy(self, policy: RoutingPolicy) -> "CaptureOptions":
        return replace(self, policy=policy)

    def resolve_policy(self, default: RoutingPolicy) -> RoutingPolicy:
        return self.policy if self.policy is not None else default
