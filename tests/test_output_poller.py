"""Tests for shellpilot.polling.output_poller.OutputPoller."""

from __future__ import annotations

import asyncio

import pytest

from shellpilot.errors import ProcessNotFound, SessionNotFound
from shellpilot.polling.models import BackgroundProcess, PollingOptions, PollingStatus
from shellpilot.polling.output_poller import OutputPoller
from shellpilot.session.buffer import CaptureBuffer
from shellpilot.session.events import EventBus, EventType
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import SessionOptions, SessionStatus

from conftest import FakeBackend, FakeShell


async def _session(manager: SessionManager, session_id: str = "default") -> None:
    await manager.create_session(SessionOptions(id=session_id))


class TestStartProcess:
    async def test_unknown_session(self, poller: OutputPoller) -> None:
        with pytest.raises(SessionNotFound):
            await poller.start_process("missing", "echo hi")
        assert len(poller) == 0

    async def test_runs_to_completion(self, manager: SessionManager, poller: OutputPoller) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "echo hello")

        status = await poller.wait_for_completion(pid, timeout=2)

        assert status == PollingStatus.COMPLETED
        record = poller.get_process(pid)
        assert record is not None
        assert record.exit_code == 0
        assert record.error is None

    async def test_nonzero_exit_is_error(self, manager: SessionManager, poller: OutputPoller) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "false")
        assert await poller.wait_for_completion(pid, timeout=2) == PollingStatus.ERROR
        assert poller.get_process(pid).exit_code == 1

    async def test_session_busy_while_running(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell
    ) -> None:
        shell.hang.add("make watch")
        await _session(manager)
        pid = await poller.start_process("default", "make watch", PollingOptions(timeout=0.3))
        await asyncio.sleep(0.05)
        assert manager.require_session("default").status == SessionStatus.BUSY

        other = await poller.start_process("default", "echo hi")
        await poller.wait_for_completion(other, timeout=2)
        record = poller.get_process(other)
        assert record.status == PollingStatus.ERROR
        assert "busy" in record.error

        await poller.stop_process(pid)
        await poller.wait_for_completion(pid, timeout=2)

    async def test_listener_detached_after_completion(
        self, manager: SessionManager, poller: OutputPoller, backend: FakeBackend
    ) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "echo hi")
        assert backend.ptys[0].data_listener_count == 2
        await poller.wait_for_completion(pid, timeout=2)
        assert backend.ptys[0].data_listener_count == 1

    async def test_events(self, manager: SessionManager, poller: OutputPoller, events: EventBus) -> None:
        await _session(manager)
        q = events.subscribe()
        pid = await poller.start_process("default", "echo hi")
        await poller.wait_for_completion(pid, timeout=2)

        seen = []
        while not q.empty():
            seen.append(q.get_nowait())
        types = [e.type for e in seen]
        assert types[0] == EventType.PROCESS_STARTED
        assert types[-1] == EventType.PROCESS_FINISHED
        assert seen[-1].data["status"] == "completed"


class TestPoll:
    async def test_unknown_process(self, poller: OutputPoller) -> None:
        with pytest.raises(ProcessNotFound):
            await poller.poll("nope")

    async def test_incremental_then_empty(self, manager: SessionManager, poller: OutputPoller) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "echo hello")
        await poller.wait_for_completion(pid, timeout=2)

        first = await poller.poll(pid)
        assert "hello" in first.output
        assert first.has_new_content is True
        assert first.is_complete is True
        assert first.exit_code == 0

        second = await poller.poll(pid)
        assert second.output == ""
        assert second.has_new_content is False
        assert second.is_complete is True

    async def test_full_mode_returns_everything(
        self, manager: SessionManager, poller: OutputPoller
    ) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "echo hello")
        await poller.wait_for_completion(pid, timeout=2)

        await poller.poll(pid)
        full = await poller.poll(pid, incremental=False)
        assert "hello" in full.output
        assert full.has_new_content is False

    async def test_sees_output_while_running(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell, backend: FakeBackend
    ) -> None:
        shell.hang.add("npm run dev")
        await _session(manager)
        pid = await poller.start_process("default", "npm run dev", PollingOptions(timeout=0.5))
        await asyncio.sleep(0.05)

        backend.ptys[0].emit_now("listening on :3000\r\n")
        await asyncio.sleep(0.01)

        result = await poller.poll(pid)
        assert "listening on :3000" in result.output
        assert result.is_complete is False
        assert result.status == PollingStatus.RUNNING

        await poller.stop_process(pid)
        await poller.wait_for_completion(pid, timeout=2)

    def test_to_dict(self) -> None:
        record = BackgroundProcess(
            id="p1", session_id="s1", command="ls", buffer=CaptureBuffer(), interval=1.0
        )
        info = record.info().to_dict()
        assert info["id"] == "p1"
        assert info["status"] == "running"
        assert info["output_length"] == 0


class TestReadCursor:
    def test_cursor_shifts_when_buffer_trims(self) -> None:
        record = BackgroundProcess(
            id="p", session_id="s", command="yes", buffer=CaptureBuffer(10), interval=1.0
        )
        record.append("abcdefgh")
        record.read_position = 8

        record.append("12345")

        assert record.buffer.text == "defgh12345"
        assert record.read_position == 5
        assert record.buffer.read_from(record.read_position) == "12345"

    def test_cursor_clamps_at_zero(self) -> None:
        record = BackgroundProcess(
            id="p", session_id="s", command="yes", buffer=CaptureBuffer(4), interval=1.0
        )
        record.append("ab")
        record.read_position = 2
        record.append("0123456789")
        assert record.read_position == 0
        assert record.read_position <= len(record.buffer)


class TestStopProcess:
    async def test_stop_sends_interrupt(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell, backend: FakeBackend
    ) -> None:
        shell.hang.add("tail -f app.log")
        await _session(manager)
        pid = await poller.start_process("default", "tail -f app.log", PollingOptions(timeout=0.3))
        await asyncio.sleep(0.05)

        await poller.stop_process(pid)

        assert backend.ptys[0].writes[-1] == "\x03"
        assert poller.get_process(pid).status == PollingStatus.STOPPED

    async def test_stop_is_idempotent(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell, backend: FakeBackend
    ) -> None:
        shell.hang.add("tail -f app.log")
        await _session(manager)
        pid = await poller.start_process("default", "tail -f app.log", PollingOptions(timeout=0.3))
        await asyncio.sleep(0.05)

        await poller.stop_process(pid)
        writes = len(backend.ptys[0].writes)
        await poller.stop_process(pid)

        assert len(backend.ptys[0].writes) == writes
        assert poller.get_process(pid).status == PollingStatus.STOPPED

    async def test_stopped_stays_stopped(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell
    ) -> None:
        shell.hang.add("tail -f app.log")
        await _session(manager)
        pid = await poller.start_process("default", "tail -f app.log", PollingOptions(timeout=0.2))
        await asyncio.sleep(0.05)
        await poller.stop_process(pid)

        status = await poller.wait_for_completion(pid, timeout=2)
        assert status == PollingStatus.STOPPED

    async def test_stop_completed_is_noop(
        self, manager: SessionManager, poller: OutputPoller, backend: FakeBackend
    ) -> None:
        await _session(manager)
        pid = await poller.start_process("default", "echo hi")
        await poller.wait_for_completion(pid, timeout=2)
        writes = len(backend.ptys[0].writes)

        await poller.stop_process(pid)

        assert poller.get_process(pid).status == PollingStatus.COMPLETED
        assert len(backend.ptys[0].writes) == writes

    async def test_stop_unknown_is_noop(self, poller: OutputPoller) -> None:
        await poller.stop_process("nope")


class TestListingAndCleanup:
    async def test_active_and_all(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell
    ) -> None:
        shell.hang.add("serve")
        await _session(manager, "a")
        await _session(manager, "b")
        done = await poller.start_process("a", "echo hi")
        await poller.wait_for_completion(done, timeout=2)
        running = await poller.start_process("b", "serve", PollingOptions(timeout=0.3))
        await asyncio.sleep(0.05)

        assert [p.id for p in poller.get_active_processes()] == [running]
        assert {p.id for p in poller.get_all_processes()} == {done, running}

        await poller.stop_process(running)
        await poller.wait_for_completion(running, timeout=2)

    async def test_cleanup_completed(
        self, manager: SessionManager, poller: OutputPoller, shell: FakeShell
    ) -> None:
        shell.hang.add("serve")
        await _session(manager, "a")
        await _session(manager, "b")
        done = await poller.start_process("a", "echo hi")
        await poller.wait_for_completion(done, timeout=2)
        running = await poller.start_process("b", "serve", PollingOptions(timeout=0.3))
        await asyncio.sleep(0.05)

        assert poller.cleanup_completed() == 1
        assert poller.get_process(done) is None
        assert poller.get_process(running) is not None

        await poller.stop_process(running)
        await poller.wait_for_completion(running, timeout=2)
        assert poller.cleanup_completed() == 1
        assert len(poller) == 0
