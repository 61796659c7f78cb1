"""Process launching and the handle returned for a running child.

The capture engine does not create processes itself. It asks a
ProcessLauncher for a child whose stdout and stderr are either pipes or the
null device, and gets back a ProcessHandle.

PopenLauncher is the default. It isolates the child in its own process group:

- POSIX: start_new_session=True, so kill() can signal the whole group
- Windows: CREATE_NEW_PROCESS_GROUP
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO, Any, Protocol, Union

from .errors import LaunchError

__all__ = [
    "PopenLauncher",
    "ProcessHandle",
    "ProcessLauncher",
    "StdinSource",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# None -> null device, bytes/str -> fed through a pipe, int/file -> passed on
StdinSource = Union[None, bytes, str, int, IO[Any]]


class ProcessHandle:
    """Reference to a launched child.

    ``exit_code`` stays None until the child has been reaped by the session
    that owns it. Only that session calls ``reap``; everyone else observes
    the exit through ``is_running``, ``wait`` and ``exit_code``.

    Attributes:
        arguments: Argument list the child was started with
        environment: Environment overrides (None = inherited unchanged)
        working_directory: Working directory (None = inherited)
        stdin: The stdin source given at launch
        correlation_id: Identifier used in log lines for this child
    """

    def __init__(
        self,
        popen: subprocess.Popen[bytes],
        arguments: Sequence[str],
        environment: Mapping[str, str] | None = None,
        working_directory: str | Path | None = None,
        stdin: StdinSource = None,
        correlation_id: str | None = None,
        process_group: int | None = None,
    ) -> None:
        self._popen = popen
        self._process_group = process_group
        self._exited = threading.Event()
        self._exit_code: int | None = None
        self.arguments = list(arguments)
        self.environment = dict(environment) if environment is not None else None
        self.working_directory = working_directory
        self.stdin = stdin
        self.correlation_id = correlation_id or uuid.uuid4().hex[:8]

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def stdout(self) -> IO[bytes] | None:
        """Read end of the stdout pipe, or None when not piped."""
        return self._popen.stdout

    @property
    def stderr(self) -> IO[bytes] | None:
        return self._popen.stderr

    @property
    def is_running(self) -> bool:
        return not self._exited.is_set()

    @property
    def exit_code(self) -> int | None:
        """Exit status; negative N means killed by signal N on POSIX."""
        return self._exit_code if self._exited.is_set() else None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the child has exited. Returns False on timeout."""
        return self._exited.wait(timeout)

    def kill(self) -> None:
        """Force the child (and its process group, if it has one) to exit.

        Safe to call at any time, including after the child exited: the
        group is still signalled so that grandchildren holding the output
        pipes open are killed too.
        """
        if self._process_group is not None:
            try:
                os.killpg(self._process_group, signal.SIGKILL)
                logger.debug(f"Sent SIGKILL to process group pgid={self._process_group}")
                return
            except ProcessLookupError:
                return
            except OSError as e:
                logger.debug(f"killpg failed, falling back to kill: {e}")
        if self.is_running:
            try:
                self._popen.kill()
                logger.debug(f"Called kill() on pid={self.pid}")
            except ProcessLookupError:
                pass

    def terminate(self) -> None:
        """Ask the child to exit (SIGTERM / TerminateProcess)."""
        if self._process_group is not None:
            try:
                os.killpg(self._process_group, signal.SIGTERM)
                return
            except ProcessLookupError:
                return
            except OSError as e:
                logger.debug(f"killpg failed, falling back to terminate: {e}")
        if self.is_running:
            try:
                self._popen.terminate()
            except ProcessLookupError:
                pass

    def reap(self) -> int:
        """Wait for the child and record its exit status.

        Internal to the owning ProcessSession, whose exit watcher is the only
        caller. Observers use ``wait``, ``is_running`` and ``exit_code``.
        """
        code = self._popen.wait()
        self._exit_code = code
        self._exited.set()
        return code

    def __repr__(self) -> str:
        state = "running" if self.is_running else f"exited({self._exit_code})"
        return (
            f"ProcessHandle(pid={self.pid}, id={self.correlation_id}, "
            f"argv0={self.arguments[0] if self.arguments else None!r}, {state})"
        )


class ProcessLauncher(Protocol):
    """Creates a child process for a session."""

    def launch(
        self,
        arguments: Sequence[str],
        environment: Mapping[str, str] | None,
        working_directory: str | Path | None,
        stdin: StdinSource,
        stdout: int,
        stderr: int,
        correlation_id: str | None = None,
    ) -> ProcessHandle:
        """Start the child.

        Args:
            arguments: Argument list, first element is the program
            environment: Overrides merged over the parent environment
            working_directory: Working directory for the child
            stdin: Input source
            stdout: ``subprocess.PIPE`` or ``subprocess.DEVNULL``
            stderr: ``subprocess.PIPE`` or ``subprocess.DEVNULL``
            correlation_id: Identifier for log lines

        Raises:
            LaunchError: If the child could not be created
        """
        ...


class PopenLauncher:
    """ProcessLauncher on top of ``subprocess.Popen``."""

    def __init__(self, new_session: bool = True) -> None:
        self.new_session = new_session

    def launch(
        self,
        arguments: Sequence[str],
        environment: Mapping[str, str] | None,
        working_directory: str | Path | None,
        stdin: StdinSource,
        stdout: int,
        stderr: int,
        correlation_id: str | None = None,
    ) -> ProcessHandle:
        argv = [os.fspath(arg) for arg in arguments]
        if not argv:
            raise LaunchError(argv, "empty argument list")

        stdin_data = stdin.encode() if isinstance(stdin, str) else stdin
        feed = isinstance(stdin_data, bytes)
        if stdin is None:
            # Never let the child inherit (and consume) our own stdin
            stdin_arg: Any = subprocess.DEVNULL
        elif feed:
            stdin_arg = subprocess.PIPE
        else:
            stdin_arg = stdin

        kwargs = self._build_subprocess_kwargs(environment)
        try:
            popen = subprocess.Popen(
                argv,
                stdin=stdin_arg,
                stdout=stdout,
                stderr=stderr,
                cwd=working_directory,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            raise LaunchError(argv, str(e)) from e

        process_group = popen.pid if self.new_session and not IS_WINDOWS else None
        handle = ProcessHandle(
            popen,
            argv,
            environment=environment,
            working_directory=working_directory,
            stdin=stdin,
            correlation_id=correlation_id,
            process_group=process_group,
        )
        logger.debug(
            f"Started subprocess pid={handle.pid} id={handle.correlation_id} "
            f"argv={argv[0]} cwd={working_directory}"
        )

        if feed and popen.stdin is not None:
            threading.Thread(
                target=_feed_stdin,
                args=(popen.stdin, stdin_data, handle.pid),
                name=f"streamcap-stdin-{handle.pid}",
                daemon=True,
            ).start()
        return handle

    def _build_subprocess_kwargs(self, environment: Mapping[str, str] | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}

        if environment is not None:
            env = dict(os.environ)
            env.update(environment)
            kwargs["env"] = env

        if self.new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs


def _feed_stdin(pipe: IO[bytes], data: bytes, pid: int) -> None:
    try:
        pipe.write(data)
    except BrokenPipeError:
        # Child exited or closed stdin without reading everything
        logger.debug(f"stdin closed early by pid={pid}")
    except OSError as e:
        logger.warning(f"Writing stdin to pid={pid} failed: {e}")
    finally:
        try:
            pipe.close()
        except OSError:
            pass
