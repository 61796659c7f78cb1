"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Add src to path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from streamcap import (  # noqa: E402
    Capturer,
    Config,
    OutputBuffer,
    OutputChunk,
    OutputSink,
    ProcessEvent,
    Terminated,
)

FAKE_CHILD = Path(__file__).parent / "fixtures" / "fake_child.py"

IS_WINDOWS = sys.platform == "win32"


def child_argv(*args: str) -> list[str]:
    """Argument list running the fake child with the given options."""
    return [sys.executable, str(FAKE_CHILD), *args]


def pattern(size: int) -> bytes:
    """Same payload the fake child writes for --out-bytes / --err-bytes."""
    block = bytes(range(256))
    return (block * (size // 256 + 1))[:size]


class EventRecorder:
    """Thread-safe event handler that remembers everything it saw."""

    def __init__(self) -> None:
        self.events: list[ProcessEvent] = []
        self.terminated = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, event: ProcessEvent) -> None:
        with self._lock:
            self.events.append(event)
        if isinstance(event, Terminated):
            self.terminated.set()

    def wait(self, timeout: float = 5.0) -> bool:
        return self.terminated.wait(timeout)

    @property
    def chunks(self) -> list[OutputChunk]:
        with self._lock:
            return [e for e in self.events if isinstance(e, OutputChunk)]

    @property
    def terminations(self) -> list[Terminated]:
        with self._lock:
            return [e for e in self.events if isinstance(e, Terminated)]

    def data(self, channel) -> bytes:
        return b"".join(c.data for c in self.chunks if c.channel is channel)


@pytest.fixture
def config() -> Config:
    """Default configuration, independent of the environment."""
    return Config(kill_timeout=2.0)


@pytest.fixture
def output() -> OutputBuffer:
    """Buffer receiving passthrough output."""
    return OutputBuffer()


@pytest.fixture
def sink(output: OutputBuffer) -> OutputSink:
    return OutputSink(stdout_buffer=output, stderr_buffer=output)


@pytest.fixture
def capturer(sink: OutputSink, config: Config) -> Capturer:
    return Capturer(sink=sink, config=config)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()
