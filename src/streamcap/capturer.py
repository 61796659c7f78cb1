"""Caller-facing entry points.

Every capability has one asynchronous entry point (returns the ProcessHandle
as soon as the child is running) and one blocking one (``wait_*``, with a
timeout). Response-shaped capabilities also have an awaitable form
(``await_*``). Everything configurable besides the argument list lives in
CaptureOptions.

Default routing per entry point:

- capture / wait_capture: RoutingPolicy.ALL
- execute / wait_execute: RoutingPolicy.PASSTHROUGH_ALL (capture is ignored)
- capture_response and the bytes/string variants: RoutingPolicy.CAPTURE_ALL
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from .aggregator import CompletionCallback, ResponseAggregator
from .buffers import OutputSink
from .config import Config, get_config
from .events import OutputChunk, ProcessEvent, Terminated
from .launcher import PopenLauncher, ProcessHandle, ProcessLauncher
from .options import CaptureOptions, RoutingPolicy
from .responses import BytesResponse, ResponseParser, StringResponse, parse_bytes, parse_string
from .session import EventHandler, ProcessSession
from .waiting import Gate, await_for, wait_for

__all__ = ["Capturer"]

logger = logging.getLogger(__name__)

OutputHandler = Callable[[OutputChunk], None]


class Capturer:
    """Runs children and captures their output.

    Example:
        capturer = Capturer()
        response = capturer.wait_string(["echo", "hello"], timeout=5)
        assert response.out == "hello\\n"

    Attributes:
        launcher: Creates the child processes
        executable: Prepended to every argument list when set
        sink: Destination for passthrough output, shared by all sessions
        config: Settings (read size, kill timeout)
    """

    def __init__(
        self,
        launcher: ProcessLauncher | None = None,
        executable: str | None = None,
        sink: OutputSink | None = None,
        config: Config | None = None,
    ) -> None:
        self.config = config or get_config()
        self.launcher = launcher or PopenLauncher(new_session=self.config.new_session)
        self.executable = executable
        self.sink = sink or OutputSink()

    def _arguments(self, arguments: Sequence[str]) -> list[str]:
        if isinstance(arguments, str):
            raise TypeError("arguments must be a sequence of strings, not a string")
        if self.executable is not None:
            return [self.executable, *arguments]
        return list(arguments)

    def _start(
        self,
        arguments: Sequence[str],
        on_event: EventHandler,
        options: CaptureOptions | None,
        policy: RoutingPolicy,
    ) -> ProcessHandle:
        options = (options or CaptureOptions()).with_policy(policy)
        argv = self._arguments(arguments)
        logger.debug(f"Starting {argv[:1]} policy={policy}")
        session = ProcessSession(
            self.launcher,
            self.sink,
            argv,
            on_event,
            options=options,
            read_size=self.config.read_size,
        )
        return session.start()

    # Asynchronous entry points

    def capture(
        self,
        arguments: Sequence[str],
        on_event: EventHandler,
        options: CaptureOptions | None = None,
    ) -> ProcessHandle:
        """Run a child and deliver its full event stream to ``on_event``.

        Raises:
            LaunchError: If the child could not be started
        """
        policy = (options or CaptureOptions()).resolve_policy(RoutingPolicy.ALL)
        return self._start(arguments, on_event, options, policy)

    def execute(
        self,
        arguments: Sequence[str],
        on_exit: Callable[[ProcessHandle], None] | None = None,
        options: CaptureOptions | None = None,
    ) -> ProcessHandle:
        """Run a child without capturing; call ``on_exit`` once it finished.

        Only the passthrough part of the policy applies.
        """
        policy = (options or CaptureOptions()).resolve_policy(RoutingPolicy.PASSTHROUGH_ALL)

        def on_event(event: ProcessEvent) -> None:
            if isinstance(event, Terminated) and on_exit is not None:
                on_exit(event.process)

        return self._start(arguments, on_event, options, policy.passthrough_only())

    def capture_response(
        self,
        arguments: Sequence[str],
        parser: ResponseParser[Any],
        on_complete: CompletionCallback,
        options: CaptureOptions | None = None,
        on_output: OutputHandler | None = None,
    ) -> ProcessHandle:
        """Run a child and build a response with ``parser`` when it finishes.

        Args:
            arguments: Argument list
            parser: ``parser(exit_code, capture, chunks) -> response``
            on_complete: Receives ``(process, response, error)``
            options: Run options
            on_output: Also receives every captured chunk as it arrives
        """
        policy = (options or CaptureOptions()).resolve_policy(RoutingPolicy.CAPTURE_ALL)
        aggregator = ResponseAggregator(parser, policy.capture, on_complete, on_output)
        return self._start(arguments, aggregator, options, policy)

    def capture_bytes(
        self,
        arguments: Sequence[str],
        on_complete: CompletionCallback,
        options: CaptureOptions | None = None,
    ) -> ProcessHandle:
        return self.capture_response(arguments, parse_bytes, on_complete, options)

    def capture_string(
        self,
        arguments: Sequence[str],
        on_complete: CompletionCallback,
        options: CaptureOptions | None = None,
    ) -> ProcessHandle:
        return self.capture_response(arguments, parse_string, on_complete, options)

    # Blocking entry points

    def wait_capture(
        self,
        arguments: Sequence[str],
        on_event: EventHandler | None = None,
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> int:
        """Blocking ``capture``. Returns the exit code.

        Raises:
            LaunchError: If the child could not be started
            ProcessTimeoutError: If ``timeout`` expired (the child was killed)
        """

        def start(gate: Gate[Any]) -> ProcessHandle:
            def handler(event: ProcessEvent) -> None:
                try:
                    if on_event is not None:
                        on_event(event)
                finally:
                    if isinstance(event, Terminated):
                        gate.set_result(event.exit_code)

            return self.capture(arguments, handler, options)

        return wait_for(start, timeout, self.config.kill_timeout)

    def wait_execute(
        self,
        arguments: Sequence[str],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> int:
        """Blocking ``execute``. Returns the exit code."""

        def start(gate: Gate[Any]) -> ProcessHandle:
            return self.execute(arguments, lambda process: gate.set_result(process.exit_code), options)

        return wait_for(start, timeout, self.config.kill_timeout)

    def wait_response(
        self,
        arguments: Sequence[str],
        parser: ResponseParser[Any],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
        on_output: OutputHandler | None = None,
    ) -> Any:
        """Blocking ``capture_response``. Returns the parsed response.

        Raises:
            LaunchError: If the child could not be started
            ParseError: If the parser failed
            ProcessTimeoutError: If ``timeout`` expired (the child was killed)
        """

        def start(gate: Gate[Any]) -> ProcessHandle:
            return self.capture_response(arguments, parser, gate.complete, options, on_output)

        return wait_for(start, timeout, self.config.kill_timeout)

    def wait_bytes(
        self,
        arguments: Sequence[str],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> BytesResponse:
        return self.wait_response(arguments, parse_bytes, options, timeout)

    def wait_string(
        self,
        arguments: Sequence[str],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> StringResponse:
        return self.wait_response(arguments, parse_string, options, timeout)

    # Awaitable entry points

    async def await_response(
        self,
        arguments: Sequence[str],
        parser: ResponseParser[Any],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
        on_output: OutputHandler | None = None,
    ) -> Any:
        """Awaitable ``wait_response``; the event loop is never blocked."""

        def start(gate: Gate[Any]) -> ProcessHandle:
            return self.capture_response(arguments, parser, gate.complete, options, on_output)

        return await await_for(start, timeout, self.config.kill_timeout)

    async def await_bytes(
        self,
        arguments: Sequence[str],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> BytesResponse:
        return await self.await_response(arguments, parse_bytes, options, timeout)

    async def await_string(
        self,
        arguments: Sequence[str],
        options: CaptureOptions | None = None,
        timeout: float | None = None,
    ) -> StringResponse:
        return await self.await_response(arguments, parse_string, options, timeout)

    def __repr__(self) -> str:
        return f"Capturer(executable={self.executable!r}, launcher={type(self.launcher).__name__})"
