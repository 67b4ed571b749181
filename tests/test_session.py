"""Tests for tool_audit.client.session — the bounded exchange.

Each test drives a real fake-server subprocess (see ``tests.helpers``)
through initialize and tools/list and checks both the outcome and that the
process was reclaimed.
"""

from __future__ import annotations

import dataclasses
import time

import pytest

from tests.helpers import QUICK_READS, RESPONSIVE_READS, make_tool
from tool_audit.client import (
    HandshakeError,
    ProcessExitedError,
    ProtocolError,
    ReadError,
    Session,
    SessionState,
    SessionTimeoutError,
    StartError,
)
from tool_audit.config import TimingProfile


def _session(descriptor, harness=None, read_policy=RESPONSIVE_READS) -> Session:
    return Session(descriptor, read_policy=read_policy, harness=harness, poll_interval=0.01)


class TestSessionSuccess:
    """Happy paths through initialize and tools/list."""

    def test_lists_tools_in_server_order(self, make_descriptor, recording_harness) -> None:
        tools = [make_tool("zeta", "last letter"), make_tool("alpha", "first letter")]
        session = _session(make_descriptor("ok", tools), recording_harness)

        listed = session.run()

        assert [t.name for t in listed] == ["zeta", "alpha"]
        assert session.tools == listed
        assert session.state is SessionState.TOOLS_LISTED
        assert session.error is None
        assert not recording_harness.processes[0].is_running()

    def test_state_history(self, make_descriptor) -> None:
        session = _session(make_descriptor("ok", [make_tool("a")]))
        session.run()
        assert session.history == [
            SessionState.NOT_STARTED,
            SessionState.STARTED,
            SessionState.INITIALIZED,
            SessionState.TOOLS_LISTED,
        ]

    def test_zero_tools(self, make_descriptor) -> None:
        assert _session(make_descriptor("ok", [])).run() == []

    def test_initialize_error_payload_is_tolerated(self, make_descriptor) -> None:
        """Only the arrival of the initialize response matters."""
        session = _session(make_descriptor("init_error", [make_tool("a")]))
        assert [t.name for t in session.run()] == ["a"]

    def test_noisy_stdout_is_skipped(self, make_descriptor) -> None:
        session = _session(make_descriptor("noisy", [make_tool("a"), make_tool("b")]))
        assert [t.name for t in session.run()] == ["a", "b"]

    def test_follows_pagination(self, make_descriptor) -> None:
        tools = [make_tool("first"), make_tool("second"), make_tool("third")]
        session = _session(make_descriptor("paginate", tools))
        assert [t.name for t in session.run()] == ["first", "second", "third"]

    def test_runs_only_once(self, make_descriptor) -> None:
        session = _session(make_descriptor("ok", []))
        session.run()
        with pytest.raises(RuntimeError, match="already ran"):
            session.run()

    def test_timing_defaults_to_descriptor(self, make_descriptor) -> None:
        descriptor = make_descriptor("ok", [], warmup=0.02, timeout=7.0)
        assert Session(descriptor).timing == TimingProfile(0.02, 7.0)


class TestSessionFailures:
    """Every failure is service-scoped, and the process is always reclaimed."""

    def test_silent_server_read_error(self, make_descriptor, recording_harness) -> None:
        """No bytes across all attempts: read error, process killed."""
        session = _session(make_descriptor("silent"), recording_harness, QUICK_READS)

        with pytest.raises(HandshakeError) as exc_info:
            session.run()

        assert isinstance(exc_info.value, ReadError)
        assert "failed to read initialize response" in str(exc_info.value)
        assert "no data received after 2 attempts" in str(exc_info.value)
        assert "stderr: listening on stdio" in str(exc_info.value)
        assert "listening on stdio" in exc_info.value.diagnostics
        assert exc_info.value.service == "fake"
        assert session.state is SessionState.FAILED
        assert session.error is exc_info.value
        process = recording_harness.processes[0]
        assert process.returncode is not None
        assert not process.is_running()

    def test_hung_server_times_out(self, make_descriptor, recording_harness) -> None:
        """The deadline wins against a tools/list that never answers."""
        deadline = 0.5
        descriptor = make_descriptor("hang", [make_tool("a")], timeout=deadline)
        session = _session(descriptor, recording_harness)

        start = time.monotonic()
        with pytest.raises(SessionTimeoutError, match="timeout after 0.5s") as exc_info:
            session.run()
        elapsed = time.monotonic() - start

        assert isinstance(exc_info.value, TimeoutError)
        assert deadline <= elapsed < deadline + 2.5
        assert session.state is SessionState.FAILED
        assert SessionState.TOOLS_LISTED not in session.history
        assert not recording_harness.processes[0].is_running()

    def test_tools_list_error_payload(self, make_descriptor) -> None:
        session = _session(make_descriptor("error"))
        with pytest.raises(ProtocolError, match="tools/list error: Method not found") as exc_info:
            session.run()
        assert exc_info.value.code == -32601
        assert session.history[-2:] == [SessionState.INITIALIZED, SessionState.FAILED]

    def test_early_exit(self, make_descriptor, recording_harness) -> None:
        session = _session(make_descriptor("exit", warmup=5.0), recording_harness)
        with pytest.raises(ProcessExitedError, match="exited early") as exc_info:
            session.run()
        assert exc_info.value.returncode == 3
        assert session.history == [
            SessionState.NOT_STARTED,
            SessionState.STARTED,
            SessionState.FAILED,
        ]

    def test_start_failure(self, make_descriptor, tmp_path) -> None:
        missing = dataclasses.replace(make_descriptor("ok"), work_dir=tmp_path / "missing")
        session = _session(missing)
        with pytest.raises(StartError):
            session.run()
        assert session.history == [SessionState.NOT_STARTED, SessionState.FAILED]


class TestSessionIntegration:
    """Whole exchange plus environment injection."""

    def test_python_services_get_pythonpath(self, make_descriptor) -> None:
        session = _session(make_descriptor("env", language="Python"))
        (tool,) = session.run()
        assert tool.description == "src"
