"""Collects the events of a session into one response."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .errors import ParseError
from .events import OutputChunk, ProcessEvent, Terminated
from .launcher import ProcessHandle
from .options import Channels
from .responses import ResponseParser

__all__ = [
    "CompletionCallback",
    "ResponseAggregator",
]

logger = logging.getLogger(__name__)

# (process, response or None, error or None)
CompletionCallback = Callable[[ProcessHandle, Any, "ParseError | None"], None]


class ResponseAggregator:
    """Event handler that builds a response when the session terminates.

    Every OutputChunk is kept in arrival order (and forwarded to
    ``on_output`` when given). On Terminated the parser runs once and the
    result goes to ``on_complete`` as ``(process, response, None)``, or as
    ``(process, None, ParseError)`` if the parser raised.

    Example:
        aggregator = ResponseAggregator(parse_string, Channels.ALL, on_complete)
        capturer.capture(["echo", "hi"], aggregator, options)
    """

    def __init__(
        self,
        parser: ResponseParser[Any],
        capture: Channels,
        on_complete: CompletionCallback,
        on_output: Callable[[OutputChunk], None] | None = None,
    ) -> None:
        self.parser = parser
        self.capture = capture
        self.chunks: list[OutputChunk] = []
        self._on_complete = on_complete
        self._on_output = on_output
        self._completed = False

    def __call__(self, event: ProcessEvent) -> None:
        if isinstance(event, Terminated):
            self._complete(event)
            return
        self.chunks.append(event)
        if self._on_output is not None:
            try:
                self._on_output(event)
            except Exception:
                logger.exception("Output handler raised")

    def _complete(self, event: Terminated) -> None:
        if self._completed:
            logger.warning(f"Duplicate Terminated for pid={event.process.pid} ignored")
            return
        self._completed = True

        exit_code = event.exit_code
        try:
            response = self._parse(exit_code if exit_code is not None else -1)
        except ParseError as e:
            logger.debug(f"Parsing response of pid={event.process.pid} failed: {e}")
            self._on_complete(event.process, None, e)
            return
        self._on_complete(event.process, response, None)

    def _parse(self, exit_code: int) -> Any:
        try:
            return self.parser(exit_code, self.capture, list(self.chunks))
        except Exception as e:
            raise ParseError(f"response parser failed: {e}") from e
