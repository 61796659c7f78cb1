"""Capturer integration tests.

Test coverage:
- Scenarios: echo hello, passthrough only, exit code 2
- Byte-exact capture for every routing policy
- Silent child, timeout, launch failure
- Environment, working directory, stdin, executable prefix
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

import pytest

from conftest import FAKE_CHILD, IS_WINDOWS, EventRecorder, child_argv, pattern
from streamcap import (
    BytesResponse,
    Capturer,
    CaptureOptions,
    Channel,
    LaunchError,
    OutputBuffer,
    OutputSink,
    ParseError,
    ProcessTimeoutError,
    RoutingPolicy,
    StringResponse,
)
from streamcap.events import OutputChunk


class TestScenarios:
    """End-to-end scenarios."""

    @pytest.mark.timeout(10)
    def test_echo_hello(self, capturer: Capturer):
        if IS_WINDOWS:
            pytest.skip("echo is a shell builtin on Windows")
        response = capturer.wait_string(["echo", "hello"], timeout=5)

        assert isinstance(response, StringResponse)
        assert response.out == "hello\n"
        assert response.exit_code == 0

    @pytest.mark.timeout(10)
    def test_passthrough_without_capture(self, capturer: Capturer, output: OutputBuffer, recorder: EventRecorder):
        options = CaptureOptions(policy=RoutingPolicy.PASSTHROUGH_ALL)
        exit_code = capturer.wait_capture(child_argv("--out", "x"), recorder, options, timeout=5)

        assert exit_code == 0
        assert recorder.chunks == []
        assert output.read() == b"x"

    @pytest.mark.timeout(10)
    def test_exit_code_reaches_event_and_parser(self, capturer: Capturer, recorder: EventRecorder):
        seen = []

        def parser(exit_code, capture, chunks):
            seen.append(exit_code)
            return exit_code

        exit_code = capturer.wait_capture(child_argv("--exit-code", "2"), recorder, timeout=5)
        assert exit_code == 2
        assert recorder.terminations[0].exit_code == 2

        assert capturer.wait_response(child_argv("--exit-code", "2"), parser, timeout=5) == 2
        assert seen == [2]

    @pytest.mark.timeout(10)
    def test_string_round_trip(self, capturer: Capturer):
        text = "line one\nzweite Zeile ü\n第三行\n"
        response = capturer.wait_string(child_argv("--out", text), timeout=5)
        assert response.out == text
        assert response.exit_code == 0


class TestRoutingPolicies:
    """Captured bytes match what the child wrote, for every policy."""

    @pytest.mark.timeout(30)
    @pytest.mark.parametrize(
        "policy",
        [
            RoutingPolicy.NONE,
            RoutingPolicy.CAPTURE_OUT,
            RoutingPolicy.CAPTURE_ERR,
            RoutingPolicy.CAPTURE_ALL,
            RoutingPolicy.PASSTHROUGH_ALL,
            RoutingPolicy.CAPTURE_OUT | RoutingPolicy.PASSTHROUGH_ERR,
            RoutingPolicy.ALL,
        ],
        ids=str,
    )
    def test_capture_matches_child_output(self, capturer: Capturer, output: OutputBuffer, policy: RoutingPolicy):
        recorder = EventRecorder()
        argv = child_argv("--out", "o1", "--err", "e1", "--out-bytes", "20000", "--err", "e2")
        capturer.wait_capture(argv, recorder, CaptureOptions(policy=policy), timeout=10)

        expected = {Channel.OUT: b"o1" + pattern(20000), Channel.ERR: b"e1e2"}
        for channel in Channel:
            if policy.captures(channel):
                assert recorder.data(channel) == expected[channel]
            else:
                assert not [c for c in recorder.chunks if c.channel is channel]
            passed = (output.out if channel is Channel.OUT else output.err).read()
            assert passed == (expected[channel] if policy.passes_through(channel) else b"")
        assert len(recorder.terminations) == 1


class TestAsyncEntryPoints:
    """Callback entry points return immediately."""

    @pytest.mark.timeout(10)
    def test_capture_returns_running_handle(self, capturer: Capturer, recorder: EventRecorder):
        handle = capturer.capture(child_argv("--sleep", "0.5"), recorder)
        assert handle.is_running
        assert handle.exit_code is None
        assert recorder.wait(5)
        assert handle.exit_code == 0

    @pytest.mark.timeout(10)
    def test_execute_calls_on_exit(self, capturer: Capturer, output: OutputBuffer):
        done = threading.Event()
        exits = []

        def on_exit(process):
            exits.append(process.exit_code)
            done.set()

        capturer.execute(child_argv("--out", "shown", "--exit-code", "1"), on_exit)
        assert done.wait(5)
        assert exits == [1]
        assert output.out.read() == b"shown"

    @pytest.mark.timeout(10)
    def test_execute_ignores_capture_flags(self, capturer: Capturer, output: OutputBuffer):
        exit_code = capturer.wait_execute(
            child_argv("--out", "x"),
            CaptureOptions(policy=RoutingPolicy.ALL),
            timeout=5,
        )
        assert exit_code == 0
        assert output.read() == b"x"

    @pytest.mark.timeout(10)
    def test_capture_bytes_callback(self, capturer: Capturer):
        done = threading.Event()
        results = []

        def on_complete(process, response, error):
            results.append((process, response, error))
            done.set()

        handle = capturer.capture_bytes(child_argv("--out-hex", "00ff10"), on_complete)
        assert done.wait(5)

        process, response, error = results[0]
        assert process is handle
        assert error is None
        assert isinstance(response, BytesResponse)
        assert response.out == b"\x00\xff\x10"

    @pytest.mark.timeout(10)
    def test_capture_string_parse_error(self, capturer: Capturer):
        done = threading.Event()
        results = []

        def on_complete(process, response, error):
            results.append((response, error))
            done.set()

        capturer.capture_string(child_argv("--out-hex", "fffe"), on_complete)
        assert done.wait(5)
        response, error = results[0]
        assert response is None
        assert isinstance(error, ParseError)

    @pytest.mark.timeout(10)
    def test_on_output_sees_chunks_live(self, capturer: Capturer):
        seen = []
        response = capturer.wait_response(
            child_argv("--out", "a", "--err", "b"),
            lambda code, capture, chunks: len(chunks),
            timeout=5,
            on_output=seen.append,
        )
        assert response == len(seen)
        assert all(isinstance(c, OutputChunk) for c in seen)


class TestBlockingEntryPoints:
    """Blocking variants: exactly one outcome."""

    @pytest.mark.timeout(10)
    def test_silent_child(self, capturer: Capturer, recorder: EventRecorder):
        exit_code = capturer.wait_capture(child_argv(), recorder, timeout=5)
        assert exit_code == 0
        assert recorder.chunks == []
        assert len(recorder.terminations) == 1

    @pytest.mark.timeout(15)
    def test_timeout_kills_child(self, capturer: Capturer):
        with pytest.raises(ProcessTimeoutError) as excinfo:
            capturer.wait_bytes(child_argv("--out", "started", "--sleep", "30"), timeout=0.5)

        assert not excinfo.value.process.is_running
        assert excinfo.value.timeout == 0.5

    @pytest.mark.timeout(15)
    def test_timeout_kills_grandchildren(self, capturer: Capturer):
        if IS_WINDOWS:
            pytest.skip("POSIX process groups only")
        with pytest.raises(ProcessTimeoutError):
            capturer.wait_string(child_argv("--spawn-sleeper", "30", "--sleep", "30"), timeout=0.5)

        # With the whole group killed the pipes close and a new run is unaffected
        assert capturer.wait_string(child_argv("--out", "next"), timeout=5).out == "next"

    @pytest.mark.timeout(10)
    def test_launch_error(self, capturer: Capturer):
        with pytest.raises(LaunchError):
            capturer.wait_string(["/nonexistent/streamcap-test-binary"], timeout=5)

    @pytest.mark.timeout(10)
    def test_parse_error_reraised(self, capturer: Capturer):
        with pytest.raises(ParseError) as excinfo:
            capturer.wait_string(child_argv("--out-hex", "c3"), timeout=5)
        assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)

    @pytest.mark.timeout(10)
    def test_string_argument_rejected(self, capturer: Capturer):
        with pytest.raises(TypeError):
            capturer.wait_string("echo hello", timeout=5)  # type: ignore[arg-type]


class TestLaunchOptions:
    """Environment, working directory, stdin and executable."""

    @pytest.mark.timeout(10)
    def test_environment_override(self, capturer: Capturer):
        options = CaptureOptions(environment={"STREAMCAP_TEST_VALUE": "42"})
        response = capturer.wait_string(child_argv("--print-env", "STREAMCAP_TEST_VALUE"), options, timeout=5)
        assert response.out == "42"

    @pytest.mark.timeout(10)
    def test_environment_is_merged(self, capturer: Capturer):
        options = CaptureOptions(environment={"STREAMCAP_TEST_VALUE": "1"})
        # PATH survives the override
        response = capturer.wait_string(child_argv("--print-env", "PATH"), options, timeout=5)
        assert response.out == os.environ.get("PATH", "<unset>")

    @pytest.mark.timeout(10)
    def test_working_directory(self, capturer: Capturer, tmp_path: Path):
        options = CaptureOptions(working_directory=tmp_path)
        response = capturer.wait_string(child_argv("--print-cwd"), options, timeout=5)
        assert Path(response.out).resolve() == tmp_path.resolve()

    @pytest.mark.timeout(10)
    def test_stdin_bytes(self, capturer: Capturer):
        options = CaptureOptions(stdin=b"fed through stdin")
        response = capturer.wait_string(child_argv("--echo-stdin"), options, timeout=5)
        assert response.out == "fed through stdin"

    @pytest.mark.timeout(10)
    def test_stdin_defaults_to_null_device(self, capturer: Capturer):
        response = capturer.wait_string(child_argv("--echo-stdin"), timeout=5)
        assert response.out == ""

    @pytest.mark.timeout(10)
    def test_handle_records_launch_parameters(self, capturer: Capturer, tmp_path: Path, recorder: EventRecorder):
        options = CaptureOptions(
            environment={"A": "1"},
            working_directory=tmp_path,
            stdin="text",
            correlation_id="run-7",
        )
        handle = capturer.capture(child_argv(), recorder, options)
        assert recorder.wait(5)

        assert handle.arguments == child_argv()
        assert handle.environment == {"A": "1"}
        assert handle.working_directory == tmp_path
        assert handle.stdin == "text"
        assert handle.correlation_id == "run-7"

    @pytest.mark.timeout(10)
    def test_executable_prefix(self, output: OutputBuffer, config):
        capturer = Capturer(executable=sys.executable, sink=OutputSink.redirected(output), config=config)
        response = capturer.wait_string([str(FAKE_CHILD), "--out", "prefixed"], timeout=5)
        assert response.out == "prefixed"
