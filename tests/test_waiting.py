"""Gate and blocking wait adapter tests."""

from __future__ import annotations

import threading
import time

import pytest

from conftest import child_argv
from streamcap.errors import LaunchError, ParseError, ProcessTimeoutError
from streamcap.waiting import Gate, wait_for


class TestGate:
    """Test the one-shot gate."""

    def test_result(self):
        gate = Gate()
        assert not gate.done()
        assert gate.set_result(42)
        assert gate.wait(0)
        assert gate.result() == 42

    def test_one_shot(self):
        gate = Gate()
        assert gate.set_result("first")
        assert not gate.set_result("second")
        assert not gate.set_exception(RuntimeError("late"))
        assert gate.result() == "first"

    def test_exception(self):
        gate = Gate()
        gate.set_exception(ParseError("bad"))
        with pytest.raises(ParseError, match="bad"):
            gate.result()

    def test_wait_timeout(self):
        gate = Gate()
        started = time.monotonic()
        assert not gate.wait(0.1)
        assert time.monotonic() - started >= 0.09

    def test_opened_from_other_thread(self):
        gate = Gate()
        threading.Timer(0.05, gate.set_result, args=("late",)).start()
        assert gate.wait(5)
        assert gate.result() == "late"

    def test_complete_adapter(self):
        ok, failed = Gate(), Gate()
        ok.complete(None, "response", None)
        failed.complete(None, None, ParseError("nope"))
        assert ok.result() == "response"
        with pytest.raises(ParseError):
            failed.result()


class TestWaitFor:
    """Test wait_for with a real child."""

    @pytest.mark.timeout(10)
    def test_returns_value(self, capturer):
        def start(gate):
            return capturer.execute(child_argv("--exit-code", "4"), lambda p: gate.set_result(p.exit_code))

        assert wait_for(start, timeout=5) == 4

    @pytest.mark.timeout(10)
    def test_reraises_parse_error(self):
        class FakeProcess:
            pid = 0

        def start(gate):
            gate.complete(FakeProcess(), None, ParseError("broken"))
            return FakeProcess()

        with pytest.raises(ParseError, match="broken"):
            wait_for(start, timeout=1)

    def test_launch_error_propagates(self):
        def start(gate):
            raise LaunchError(["missing"], "not found")

        with pytest.raises(LaunchError):
            wait_for(start, timeout=1)

    @pytest.mark.timeout(15)
    def test_timeout_kills_child(self, capturer):
        processes = []

        def start(gate):
            process = capturer.execute(child_argv("--sleep", "30"), lambda p: gate.set_result(p.exit_code))
            processes.append(process)
            return process

        started = time.monotonic()
        with pytest.raises(ProcessTimeoutError) as excinfo:
            wait_for(start, timeout=0.5, kill_timeout=5)

        assert time.monotonic() - started < 10
        assert excinfo.value.process is processes[0]
        assert not processes[0].is_running
        assert isinstance(excinfo.value, TimeoutError)
