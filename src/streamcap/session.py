"""Process session: one child from launch to Terminated.

State machine::

    CREATED --launch--> RUNNING --child exited--> DRAINING --both channels done--> TERMINATED

- A launch failure raises LaunchError from ``start()`` and the session stays
  CREATED. No event is ever delivered for it.
- An exit watcher thread is the only place the child is reaped. After the
  exit it waits on the ``done`` latch of every reader, closes the pipes (once),
  moves to TERMINATED and only then dispatches the single Terminated event.
- Per chunk: passthrough write first, then the OutputChunk event if the
  channel is captured. End-of-file markers close a channel silently; read
  error markers are delivered so the caller can see them.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from functools import partial

from .buffers import OutputSink
from .config import DEFAULT_READ_SIZE
from .events import OutputChunk, ProcessEvent, Terminated
from .launcher import ProcessHandle, ProcessLauncher
from .options import CaptureOptions, Channel, RoutingPolicy
from .reader import StreamReader

__all__ = [
    "EventHandler",
    "ProcessSession",
    "SessionState",
]

logger = logging.getLogger(__name__)

EventHandler = Callable[[ProcessEvent], None]


class SessionState(str, Enum):
    """Lifecycle of a session."""

    CREATED = "created"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class ProcessSession:
    """Runs one child and turns its output into events.

    Example:
        session = ProcessSession(
            PopenLauncher(),
            OutputSink(),
            ["echo", "hello"],
            on_event=print,
            options=CaptureOptions(policy=RoutingPolicy.CAPTURE_ALL),
        )
        handle = session.start()
        session.wait()
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        sink: OutputSink,
        arguments: Sequence[str],
        on_event: EventHandler,
        options: CaptureOptions | None = None,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.arguments = list(arguments)
        self.options = options or CaptureOptions()
        self.policy: RoutingPolicy = self.options.resolve_policy(RoutingPolicy.ALL)
        self.read_size = read_size
        self._launcher = launcher
        self._sink = sink
        self._on_event = on_event
        self._state = SessionState.CREATED
        self._state_lock = threading.Lock()
        self._finished = threading.Event()
        self._handle: ProcessHandle | None = None
        self._executor: Executor | None = None
        self._owns_executor = False
        self._readers: dict[Channel, StreamReader] = {}
        self._released = False
        self._starting = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def process(self) -> ProcessHandle | None:
        return self._handle

    def start(self) -> ProcessHandle:
        """Launch the child and start draining it.

        Returns:
            The handle of the running child

        Raises:
            LaunchError: If the launcher could not start the child
            RuntimeError: If the session was already started
        """
        with self._state_lock:
            if self._starting or self._state is not SessionState.CREATED:
                raise RuntimeError(f"session already started ({self._state.value})")
            self._starting = True

        try:
            handle = self._launcher.launch(
                self.arguments,
                self.options.environment,
                self.options.working_directory,
                self.options.stdin,
                self._stream_target(Channel.OUT),
                self._stream_target(Channel.ERR),
                correlation_id=self.options.correlation_id,
            )
        except BaseException:
            with self._state_lock:
                self._starting = False
            raise
        self._handle = handle

        if self.options.executor is not None:
            self._executor = self.options.executor
        else:
            self._executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=f"streamcap-deliver-{handle.pid}",
            )
            self._owns_executor = True

        self._set_state(SessionState.RUNNING)
        logger.debug(
            f"Session id={handle.correlation_id} pid={handle.pid} policy={self.policy}"
        )

        for channel, source in ((Channel.OUT, handle.stdout), (Channel.ERR, handle.stderr)):
            if source is None:
                continue
            self._readers[channel] = StreamReader(
                source,
                channel,
                partial(self._handle_chunk, channel),
                self._executor,
                self.read_size,
            )
        for reader in self._readers.values():
            reader.start()

        threading.Thread(
            target=self._watch_exit,
            name=f"streamcap-exit-{handle.pid}",
            daemon=True,
        ).start()
        return handle

    def wait(self, timeout: float | None = None) -> bool:
        """Block until Terminated has been delivered. Returns False on timeout."""
        return self._finished.wait(timeout)

    def _stream_target(self, channel: Channel) -> int:
        # A channel nobody reads goes to the null device so the child can
        # never block on a full pipe.
        return subprocess.PIPE if self.policy.needs_pipe(channel) else subprocess.DEVNULL

    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        logger.debug(f"Session state {previous.value} -> {state.value}")

    def _handle_chunk(self, channel: Channel, data: bytes, error_code: int) -> None:
        """Runs on the delivery executor."""
        if data and self.policy.passes_through(channel):
            self._sink.write(channel, data)
        if not self.policy.captures(channel):
            return
        if not data and error_code == 0:
            return
        self._dispatch(
            OutputChunk(
                process=self._handle,
                channel=channel,
                data=data,
                error_code=error_code,
            )
        )

    def _dispatch(self, event: ProcessEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception(f"Event handler raised on {event!r}")

    def _watch_exit(self) -> None:
        handle = self._handle
        assert handle is not None and self._executor is not None
        try:
            code = handle.reap()
            logger.debug(f"Subprocess exited pid={handle.pid} returncode={code}")
            self._set_state(SessionState.DRAINING)

            for reader in self._readers.values():
                reader.done.wait()
            self._release()
            self._set_state(SessionState.TERMINATED)

            event = Terminated(process=handle)
            try:
                future = self._executor.submit(self._dispatch, event)
            except RuntimeError as e:
                logger.warning(f"Delivery executor unavailable ({e}), delivering inline")
                self._dispatch(event)
            else:
                future.result()
        finally:
            if self._owns_executor:
                self._executor.shutdown(wait=False)
            self._finished.set()

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        handle = self._handle
        for pipe in (handle.stdout, handle.stderr):
            if pipe is None:
                continue
            try:
                pipe.close()
            except OSError as e:
                logger.debug(f"Closing pipe of pid={handle.pid} failed: {e}")
        logger.debug(f"Released pipes of pid={handle.pid}")

    def __repr__(self) -> str:
        pid = self._handle.pid if self._handle is not None else None
        return f"ProcessSession(pid={pid}, state={self._state.value}, policy={self.policy})"
