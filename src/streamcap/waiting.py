"""Blocking and awaitable adapters over the callback-driven entry points.

Both adapters take a ``start`` function that launches a session wired to a
Gate and returns its ProcessHandle. The gate opens exactly once, when the
flow reaches its completion callback.

A caller observes exactly one of: the value, ParseError, ProcessTimeoutError
or LaunchError (raised by ``start`` itself). On timeout the child is killed
before the error is raised; its session still drains and terminates in the
background.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import wait as wait_futures
from typing import Any, Generic, TypeVar

import anyio
import anyio.to_thread

from .config import get_config
from .errors import ProcessTimeoutError
from .launcher import ProcessHandle

__all__ = [
    "Gate",
    "await_for",
    "wait_for",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Gate(Generic[T]):
    """One-shot gate carrying either a value or an exception.

    Later attempts to open an already open gate are ignored and return
    False.
    """

    def __init__(self) -> None:
        self._future: Future[T] = Future()

    def set_result(self, value: T) -> bool:
        try:
            self._future.set_result(value)
        except InvalidStateError:
            return False
        return True

    def set_exception(self, error: BaseException) -> bool:
        try:
            self._future.set_exception(error)
        except InvalidStateError:
            return False
        return True

    def complete(self, process: ProcessHandle, response: T | None, error: BaseException | None) -> None:
        """Completion callback for ResponseAggregator."""
        if error is not None:
            self.set_exception(error)
        else:
            self.set_result(response)  # type: ignore[arg-type]

    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the gate opens. Returns False on timeout."""
        wait_futures([self._future], timeout=timeout)
        return self._future.done()

    def result(self) -> T:
        """Value of an open gate; re-raises a stored exception."""
        return self._future.result(timeout=0)


StartFunction = Callable[[Gate[Any]], ProcessHandle]


def _kill(process: ProcessHandle, kill_timeout: float) -> None:
    logger.debug(f"Timeout reached, killing pid={process.pid}")
    process.kill()
    if not process.wait(kill_timeout):
        logger.warning(f"Subprocess did not exit after kill pid={process.pid}")


def wait_for(
    start: StartFunction,
    timeout: float | None = None,
    kill_timeout: float | None = None,
) -> Any:
    """Run ``start`` and block until its gate opens.

    Args:
        start: Launches the session and wires the gate to its completion
        timeout: Seconds to wait; None waits forever
        kill_timeout: Seconds to wait for a killed child to be reaped

    Returns:
        The value the gate was opened with

    Raises:
        LaunchError: Raised by ``start``
        ParseError: The response parser failed
        ProcessTimeoutError: The timeout expired; the child has been killed
    """
    if kill_timeout is None:
        kill_timeout = get_config().kill_timeout

    gate: Gate[Any] = Gate()
    process = start(gate)
    if not gate.wait(timeout):
        _kill(process, kill_timeout)
        raise ProcessTimeoutError(process, timeout)
    return gate.result()


async def await_for(
    start: StartFunction,
    timeout: float | None = None,
    kill_timeout: float | None = None,
) -> Any:
    """Awaitable form of ``wait_for``.

    The gate is waited on in a worker thread. Cancelling the caller kills
    the child, like a timeout does, before the cancellation propagates.
    """
    if kill_timeout is None:
        kill_timeout = get_config().kill_timeout

    gate: Gate[Any] = Gate()
    process = start(gate)
    try:
        opened = await anyio.to_thread.run_sync(gate.wait, timeout, abandon_on_cancel=True)
    except anyio.get_cancelled_exc_class():
        logger.debug(f"Wait cancelled, killing pid={process.pid}")
        process.kill()
        raise
    if not opened:
        await anyio.to_thread.run_sync(_kill, process, kill_timeout)
        raise ProcessTimeoutError(process, timeout)
    return gate.result()
