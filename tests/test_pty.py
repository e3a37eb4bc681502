"""Tests for shellpilot.pty (LocalPty, backends) and PTY allocation retry."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from shellpilot.config import BackendConfig, SessionConfig, TailConfig
from shellpilot.errors import BackendNotAvailable
from shellpilot.polling.log_tailer import LogTailer
from shellpilot.polling.models import LogLevel, TailOptions
from shellpilot.pty.backend import ExecuteOptions, PtyOptions
from shellpilot.pty.local import DockerBackend, LocalBackend, create_backend
from shellpilot.pty.process import LocalPty, PtyStatus
from shellpilot.session.manager import SessionManager, _create_pty_with_retry
from shellpilot.session.models import CommandContext, SessionOptions

needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX sh")
needs_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="needs bash")


# ---------------------------------------------------------------------------
# LocalPty
# ---------------------------------------------------------------------------


@needs_sh
class TestLocalPty:
    async def test_output_and_exit(self) -> None:
        chunks: list[str] = []
        exited = asyncio.Event()
        proc = LocalPty(["sh", "-c", "echo ready"])
        proc.on_data(chunks.append)
        proc.on_exit(lambda code: exited.set())

        await proc.start()
        await asyncio.wait_for(exited.wait(), timeout=5)

        assert "ready" in "".join(chunks)
        assert proc.status == PtyStatus.EXITED
        assert not proc.alive

    async def test_kill(self) -> None:
        exited = asyncio.Event()
        proc = LocalPty(["sh"])
        proc.on_exit(lambda code: exited.set())
        await proc.start()
        assert proc.alive
        assert proc.pid is not None

        proc.kill()
        await asyncio.sleep(0.05)

        assert proc.status == PtyStatus.KILLED
        assert not exited.is_set()
        with pytest.raises(RuntimeError):
            proc.write("echo hi\n")

    async def test_kill_twice_is_safe(self) -> None:
        proc = LocalPty(["sh"])
        await proc.start()
        proc.kill()
        proc.kill()
        assert proc.status == PtyStatus.KILLED

    async def test_listener_errors_do_not_stop_delivery(self) -> None:
        chunks: list[str] = []
        exited = asyncio.Event()

        def broken(_: str) -> None:
            raise ValueError("listener bug")

        proc = LocalPty(["sh", "-c", "echo still-here"])
        proc.on_data(broken)
        proc.on_data(chunks.append)
        proc.on_exit(lambda code: exited.set())
        await proc.start()
        await asyncio.wait_for(exited.wait(), timeout=5)
        assert "still-here" in "".join(chunks)

    async def test_remove_data_listener(self) -> None:
        proc = LocalPty(["sh"])
        proc.on_data(print)
        proc.remove_data_listener(print)
        proc.remove_data_listener(print)


@needs_sh
class TestLocalSessionEndToEnd:
    async def test_execute_through_real_shell(self) -> None:
        backend = LocalBackend(shell=shutil.which("sh"))
        manager = SessionManager(backend, SessionConfig(startup_delay=0.3, trailing_delay=0.1))
        try:
            await manager.create_session(SessionOptions(id="default", env={"PS1": "$ "}))

            hello = await manager.execute_command(CommandContext("default", "echo hello"))
            assert hello.output == "hello"
            assert hello.exit_code == 0

            failed = await manager.execute_command(CommandContext("default", "false"))
            assert failed.exit_code == 1
            assert failed.success is False
        finally:
            await manager.close_all_sessions()


@needs_bash
class TestBashSessionEndToEnd:
    """bash's readline redraws every typed line after the prompt."""

    @pytest.fixture
    async def bash_manager(self, tmp_path: Path) -> AsyncIterator[SessionManager]:
        backend = LocalBackend(shell=shutil.which("bash"), cwd=str(tmp_path))
        manager = SessionManager(backend, SessionConfig(startup_delay=0.5, trailing_delay=0.1))
        await manager.create_session(
            SessionOptions(id="default", env={"PS1": "\\u@\\h:\\w\\$ "}, cols=400)
        )
        yield manager
        await manager.close_all_sessions()

    async def test_commands_have_no_prompt_residue(self, bash_manager: SessionManager) -> None:
        ok = await bash_manager.execute_command(CommandContext("default", "true"))
        assert ok.output == ""
        assert ok.exit_code == 0

        failed = await bash_manager.execute_command(CommandContext("default", "false"))
        assert failed.output == ""
        assert failed.exit_code == 1

        hello = await bash_manager.execute_command(CommandContext("default", "echo hello"))
        assert hello.output == "hello"

    async def test_tail_reads_only_file_content(
        self, bash_manager: SessionManager, tmp_path: Path
    ) -> None:
        log = tmp_path / "app.log"
        log.write_text("2024-01-15T10:00:00Z [INFO] booted\n")
        tailer = LogTailer(bash_manager, TailConfig(command_timeout=5.0, size_timeout=5.0))

        # Relative to the session cwd
        tail_id = await tailer.start_tailing("default", "app.log", TailOptions(lines=10))
        state = tailer.get_tail(tail_id)
        assert state is not None
        assert [e.content for e in state.initial_lines] == ["[INFO] booted"]

        assert await tailer.get_incremental_logs(tail_id) == []
        assert await tailer.get_incremental_logs(tail_id) == []

        with log.open("a") as f:
            f.write("2024-01-15T10:00:01Z [ERROR] disk full\n")
        entries = await tailer.get_incremental_logs(tail_id)
        assert [(e.content, e.level) for e in entries] == [("[ERROR] disk full", LogLevel.ERROR)]


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@needs_sh
class TestLocalBackend:
    async def test_execute(self) -> None:
        result = await LocalBackend().execute("echo out; echo err >&2; exit 3")
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.exit_code == 3
        assert result.timed_out is False

    async def test_execute_with_input(self) -> None:
        result = await LocalBackend().execute("cat", ExecuteOptions(input="piped"))
        assert result.stdout == "piped"

    async def test_execute_timeout(self) -> None:
        result = await LocalBackend().execute("sleep 5", ExecuteOptions(timeout=0.1))
        assert result.timed_out is True
        assert result.exit_code is None

    async def test_system_info_is_cached(self) -> None:
        backend = LocalBackend(shell="/bin/sh", cwd="/tmp")
        info = await backend.get_system_info()
        assert info.backend == "local"
        assert info.default_shell == "/bin/sh"
        assert await backend.get_system_info() is info
        assert backend.get_default_cwd() == "/tmp"


class TestDockerBackend:
    def test_exec_prefix(self) -> None:
        backend = DockerBackend("web-1", shell="/bin/sh", cwd="/app")
        assert backend._exec_prefix(None, {"A": "1"}, tty=True) == [
            "docker", "exec", "-i", "-t", "-w", "/app", "-e", "A=1", "web-1",
        ]
        assert backend._exec_prefix("/srv", {}, tty=False) == [
            "docker", "exec", "-i", "-w", "/srv", "web-1",
        ]

    def test_defaults(self) -> None:
        backend = DockerBackend("web-1")
        assert backend.get_default_shell() == "/bin/bash"
        assert backend.get_default_cwd() == "/"


class TestCreateBackend:
    def test_local(self) -> None:
        backend = create_backend(BackendConfig(type="local", shell="/bin/zsh", cwd="/tmp"))
        assert isinstance(backend, LocalBackend)
        assert backend.get_default_shell() == "/bin/zsh"

    def test_docker(self) -> None:
        backend = create_backend(BackendConfig(type="docker", docker_container="db"))
        assert isinstance(backend, DockerBackend)
        assert backend.container == "db"

    def test_docker_without_container(self) -> None:
        with pytest.raises(BackendNotAvailable):
            create_backend(BackendConfig(type="docker"))


# ---------------------------------------------------------------------------
# PTY allocation retry
# ---------------------------------------------------------------------------


class TestCreatePtyRetry:
    async def test_success_on_first_try(self) -> None:
        backend = MagicMock()
        backend.create_pty = AsyncMock(return_value="pty")
        assert await _create_pty_with_retry(backend, PtyOptions(shell="sh")) == "pty"
        assert backend.create_pty.call_count == 1

    async def test_retries_on_os_error(self) -> None:
        backend = MagicMock()
        backend.create_pty = AsyncMock(side_effect=[OSError("no ptys"), "pty"])
        assert await _create_pty_with_retry(backend, PtyOptions(shell="sh")) == "pty"
        assert backend.create_pty.call_count == 2

    async def test_gives_up_after_3_attempts(self) -> None:
        backend = MagicMock()
        backend.create_pty = AsyncMock(
            side_effect=[OSError("fail 1"), OSError("fail 2"), OSError("fail 3")]
        )
        with pytest.raises(OSError, match="fail 3"):
            await _create_pty_with_retry(backend, PtyOptions(shell="sh"))
        assert backend.create_pty.call_count == 3

    async def test_does_not_retry_other_errors(self) -> None:
        backend = MagicMock()
        backend.create_pty = AsyncMock(side_effect=ValueError("bad shell"))
        with pytest.raises(ValueError, match="bad shell"):
            await _create_pty_with_retry(backend, PtyOptions(shell="sh"))
        assert backend.create_pty.call_count == 1
