"""Tests for ptyhost.process.runner (streaming and collecting modes)."""

from __future__ import annotations

import os
import queue
import sys
import time
from collections.abc import Iterator

import pytest
from conftest import drain_events, output_text, wait_gone

from ptyhost.config import ProcessConfig
from ptyhost.errors import AlreadyExists, NotFound
from ptyhost.process.runner import (
    CommandError,
    CommandOk,
    ProcessRunner,
    TrackedProcess,
    run_sync,
)
from ptyhost.session.wire import EventType, Wire, WireEvent

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX commands")


@pytest.fixture
def wire() -> Wire:
    return Wire()


@pytest.fixture
def events(wire: Wire) -> queue.Queue[WireEvent | None]:
    return wire.subscribe()


@pytest.fixture
def runner(wire: Wire) -> Iterator[ProcessRunner]:
    r = ProcessRunner(wire, ProcessConfig(drain_timeout=1.0))
    yield r
    r.cleanup()


# ---------------------------------------------------------------------------
# Streaming mode
# ---------------------------------------------------------------------------


class TestRunAsync:
    def test_stdout_lines_then_exit(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "sh", ["-c", "echo one; echo two"])
        collected = drain_events(events, "r1")
        outputs = [e for e in collected if e.type is EventType.OUTPUT]
        assert [e.data["chunk"] for e in outputs] == ["one", "two"]
        assert all(e.data["stream"] == "stdout" for e in outputs)
        assert collected[-1].type is EventType.EXIT
        assert collected[-1].data["code"] == 0

    def test_stderr_is_tagged(self, runner: ProcessRunner, events: queue.Queue) -> None:
        runner.run_async("r1", "sh", ["-c", "echo oops >&2"])
        collected = drain_events(events, "r1")
        errs = [e for e in collected if e.data.get("stream") == "stderr"]
        assert [e.data["chunk"] for e in errs] == ["oops"]

    def test_failing_command_exits_nonzero_without_error(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "false")
        collected = drain_events(events, "r1")
        assert [e.type for e in collected] == [EventType.EXIT]
        assert collected[0].data["code"] != 0

    def test_exit_code_propagated(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "sh", ["-c", "exit 7"])
        collected = drain_events(events, "r1")
        assert collected[-1].data == {"id": "r1", "code": 7}

    def test_missing_binary_emits_error(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "nonexistent-binary-xyz")
        collected = drain_events(events, "r1")
        assert len(collected) == 1
        assert collected[0].type is EventType.ERROR
        assert "nonexistent-binary-xyz" in collected[0].data["message"]
        assert runner.get("r1") is None

    def test_missing_cwd_emits_error(
        self, runner: ProcessRunner, events: queue.Queue, tmp_path
    ) -> None:
        runner.run_async("r1", "true", cwd=str(tmp_path / "missing"))
        collected = drain_events(events, "r1")
        assert [e.type for e in collected] == [EventType.ERROR]

    def test_invalid_utf8_is_replaced(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "printf", ["ok\\377\\n"])
        collected = drain_events(events, "r1")
        assert "ok\ufffd" in output_text(collected)

    def test_carriage_return_does_not_split_lines(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "printf", ["50%%\\r100%%\\n"])
        collected = drain_events(events, "r1")
        chunks = [e.data["chunk"] for e in collected if e.type is EventType.OUTPUT]
        assert chunks == ["50%\r100%"]

    def test_crlf_is_stripped(self, runner: ProcessRunner, events: queue.Queue) -> None:
        runner.run_async("r1", "printf", ["a\\r\\nb\\n"])
        collected = drain_events(events, "r1")
        chunks = [e.data["chunk"] for e in collected if e.type is EventType.OUTPUT]
        assert chunks == ["a", "b"]

    def test_cwd_is_honoured(
        self, runner: ProcessRunner, events: queue.Queue, tmp_path
    ) -> None:
        runner.run_async("r1", "pwd", cwd=str(tmp_path))
        collected = drain_events(events, "r1")
        assert os.path.realpath(output_text(collected)) == os.path.realpath(tmp_path)

    def test_entry_removed_before_exit_event(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "true")
        drain_events(events, "r1")
        assert runner.get("r1") is None
        assert len(runner) == 0

    def test_duplicate_live_id_rejected(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "sleep", ["30"])
        with pytest.raises(AlreadyExists):
            runner.run_async("r1", "true")
        runner.cancel("r1")
        drain_events(events, "r1")

    def test_id_reusable_after_exit(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "true")
        drain_events(events, "r1")
        runner.run_async("r1", "sh", ["-c", "echo again"])
        assert "again" in output_text(drain_events(events, "r1"))

    def test_concurrent_processes_keep_their_ids(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("a", "sh", ["-c", "echo from-a"])
        runner.run_async("b", "sh", ["-c", "echo from-b"])
        seen: dict[str, list[WireEvent]] = {"a": [], "b": []}
        deadline = time.monotonic() + 10
        done: set[str] = set()
        while done != {"a", "b"} and time.monotonic() < deadline:
            event = events.get(timeout=10)
            assert event is not None
            seen[event.session_id].append(event)
            if event.is_terminal:
                done.add(event.session_id)
        assert output_text(seen["a"]) == "from-a"
        assert output_text(seen["b"]) == "from-b"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    def test_cancel_emits_single_exit(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "sleep", ["30"])
        runner.cancel("r1")
        collected = drain_events(events, "r1")
        assert [e.type for e in collected] == [EventType.EXIT]
        assert runner.get("r1") is None
        time.sleep(0.3)
        assert events.empty()

    def test_cancel_kills_grandchildren(
        self, runner: ProcessRunner, events: queue.Queue, tmp_path
    ) -> None:
        pidfile = tmp_path / "child.pid"
        runner.run_async("r1", "sh", ["-c", f"sleep 30 & echo $! > {pidfile}; wait"])
        deadline = time.monotonic() + 5
        while not (pidfile.exists() and pidfile.read_text().strip()):
            assert time.monotonic() < deadline, "grandchild never started"
            time.sleep(0.02)
        grandchild = int(pidfile.read_text())

        runner.cancel("r1")
        drain_events(events, "r1")

        assert wait_gone(grandchild)

    def test_cancel_unknown_id(self, runner: ProcessRunner) -> None:
        with pytest.raises(NotFound):
            runner.cancel("ghost")

    def test_cancel_after_exit_is_not_found(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "true")
        drain_events(events, "r1")
        with pytest.raises(NotFound):
            runner.cancel("r1")

    def test_cleanup_cancels_everything(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("a", "sleep", ["30"])
        runner.run_async("b", "sleep", ["30"])
        runner.cleanup()
        assert len(runner) == 0
        exited: set[str] = set()
        while exited != {"a", "b"}:
            event = events.get(timeout=10)
            assert event is not None
            if event.type is EventType.EXIT:
                exited.add(event.session_id)


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------


class TestIntrospection:
    def test_scrollback_of_live_process(
        self, runner: ProcessRunner, events: queue.Queue
    ) -> None:
        runner.run_async("r1", "sh", ["-c", "echo ready; sleep 30"])
        drain_events(
            events, "r1", until=lambda got: "ready" in output_text(got)
        )
        assert runner.scrollback("r1") == ["ready"]
        runner.cancel("r1")
        drain_events(events, "r1")

    def test_scrollback_unknown_id(self, runner: ProcessRunner) -> None:
        with pytest.raises(NotFound):
            runner.scrollback("ghost")

    def test_list_processes(self, runner: ProcessRunner, events: queue.Queue) -> None:
        runner.run_async("r1", "sleep", ["30"], cwd="/tmp")
        [info] = runner.list_processes()
        assert info["id"] == "r1"
        assert info["kind"] == "process"
        assert info["command"] == "sleep 30"
        assert info["cwd"] == "/tmp"
        tracked = runner.get("r1")
        assert isinstance(tracked, TrackedProcess)
        assert info["pid"] == tracked.pid
        runner.cancel("r1")
        drain_events(events, "r1")


# ---------------------------------------------------------------------------
# Collecting mode
# ---------------------------------------------------------------------------


class TestRunSync:
    def test_success_returns_stdout(self) -> None:
        result = run_sync("sh", ["-c", "echo out; echo err >&2"])
        assert isinstance(result, CommandOk)
        assert not result.is_error
        assert result.output == "out\n"

    def test_failure_returns_stderr(self) -> None:
        result = run_sync("sh", ["-c", "echo out; echo err >&2; exit 2"])
        assert isinstance(result, CommandError)
        assert result.is_error
        assert result.output == "err\n"

    def test_missing_binary_is_error(self) -> None:
        result = run_sync("nonexistent-binary-xyz")
        assert isinstance(result, CommandError)
        assert result.output

    def test_cwd(self, tmp_path) -> None:
        result = run_sync("pwd", cwd=str(tmp_path))
        assert os.path.realpath(result.output.strip()) == os.path.realpath(tmp_path)

    def test_runner_method_uses_configured_encoding(self, runner: ProcessRunner) -> None:
        result = runner.run_sync("printf", ["caf\\303\\251"])
        assert result.output == "café"

    def test_collecting_does_not_register(self, runner: ProcessRunner) -> None:
        runner.run_sync("true")
        assert len(runner) == 0
