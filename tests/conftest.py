"""Shared fixtures: a scripted shell behind a fake pseudo-terminal."""

from __future__ import annotations

import asyncio
import re
import shlex
from typing import Callable

import pytest

from shellpilot.config import PollingConfig, SessionConfig, TailConfig
from shellpilot.polling.log_tailer import LogTailer
from shellpilot.polling.output_poller import OutputPoller
from shellpilot.pty.backend import ExecuteOptions, ExecuteResult, PtyOptions, SystemInfo
from shellpilot.session.events import EventBus
from shellpilot.session.manager import SessionManager

# echo '<marker>'  or  echo '<marker>'$?
_MARKER_ECHO_RE = re.compile(r"echo '([^']*)'(\$\?)?")


class FakeShell:
    """Decides what a typed command prints and its exit status.

    ``commands`` maps exact command lines to (output, exit_code). ``files``
    backs ``stat``/``wc``/``tail``/``cat``. Commands in ``hang`` never return
    until interrupted.
    """

    def __init__(self) -> None:
        self.commands: dict[str, tuple[str, int]] = {}
        self.files: dict[str, str] = {}
        self.hang: set[str] = set()
        self.history: list[str] = []

    def run(self, command: str) -> tuple[str, int]:
        self.history.append(command)
        if command in self.commands:
            return self.commands[command]

        argv = shlex.split(command)
        if not argv:
            return "", 0
        name = argv[0]

        if name == "echo":
            return " ".join(argv[1:]), 0
        if name == "true":
            return "", 0
        if name == "false":
            return "", 1
        if name == "stat":
            path = argv[3]
            if path not in self.files:
                return f"wc: {path}: No such file or directory", 1
            return str(len(self.files[path].encode("utf-8"))), 0
        if name == "cat":
            return self._read(argv[1], lambda text: text)
        if argv[:2] == ["tail", "-n"]:
            count = int(argv[2])
            return self._read(
                argv[3], lambda text: "\n".join(text.splitlines()[-count:]) if count else ""
            )
        if argv[:2] == ["tail", "-c"]:
            offset = int(argv[2].lstrip("+"))
            return self._read(
                argv[3], lambda text: text.encode("utf-8")[offset - 1 :].decode("utf-8")
            )
        return f"sh: {name}: command not found", 127

    def _read(self, path: str, select: Callable[[str], str]) -> tuple[str, int]:
        if path not in self.files:
            return f"{path}: No such file or directory", 1
        return select(self.files[path]), 0


class FakePty:
    """Pseudo-terminal stand-in that behaves like an interactive shell.

    Every written line is echoed back first, the way a terminal in canonical
    mode does. Output is delivered on the next loop iteration, never inside
    ``write()``.
    """

    def __init__(self, shell: FakeShell, pid: int) -> None:
        self.shell = shell
        self._pid = pid
        self.writes: list[str] = []
        self.killed = False
        self.exited = False
        self.hung = False
        self.kill_error: Exception | None = None
        self._last_exit = 0
        self._data_listeners: list[Callable[[str], None]] = []
        self._exit_listeners: list[Callable[[int | None], None]] = []

    @property
    def pid(self) -> int | None:
        return self._pid

    def on_data(self, listener: Callable[[str], None]) -> None:
        self._data_listeners.append(listener)

    def remove_data_listener(self, listener: Callable[[str], None]) -> None:
        if listener in self._data_listeners:
            self._data_listeners.remove(listener)

    def on_exit(self, listener: Callable[[int | None], None]) -> None:
        self._exit_listeners.append(listener)

    @property
    def data_listener_count(self) -> int:
        return len(self._data_listeners)

    def write(self, text: str) -> None:
        if self.killed or self.exited:
            raise RuntimeError(f"PTY {self._pid} is not running")
        self.writes.append(text)

        if text == "\x03":
            # SIGINT also flushes whatever was typed ahead
            if self.hung:
                self.hung = False
                self._last_exit = 130
            self._emit("^C\r\n")
            return

        line = text.rstrip("\n")
        self._emit(line + "\r\n")
        if self.hung:
            return

        marker = _MARKER_ECHO_RE.fullmatch(line)
        if marker:
            suffix = str(self._last_exit) if marker.group(2) else ""
            self._emit(marker.group(1) + suffix + "\r\n")
            return

        if line in self.shell.hang:
            self.hung = True
            return

        output, self._last_exit = self.shell.run(line)
        if output:
            if not output.endswith("\n"):
                output += "\n"
            self._emit(output.replace("\n", "\r\n"))

    def emit_now(self, text: str) -> None:
        """Push unsolicited output, as a background job would."""
        self._emit(text)

    def exit(self, code: int | None = 0) -> None:
        self.exited = True
        for listener in list(self._exit_listeners):
            listener(code)

    def kill(self) -> None:
        if self.kill_error is not None:
            raise self.kill_error
        self.killed = True

    def _emit(self, text: str) -> None:
        asyncio.get_running_loop().call_soon(self._deliver, text)

    def _deliver(self, text: str) -> None:
        for listener in list(self._data_listeners):
            listener(text)


class FakeBackend:
    """Backend handing out ``FakePty`` shells that share one ``FakeShell``."""

    type = "fake"

    def __init__(self, shell: FakeShell | None = None) -> None:
        self.shell = shell or FakeShell()
        self.ptys: list[FakePty] = []
        self.pty_options: list[PtyOptions] = []
        self.create_failures = 0
        self.exit_on_start = False

    async def is_available(self) -> bool:
        return True

    async def get_system_info(self) -> SystemInfo:
        return SystemInfo(
            backend=self.type,
            os="Linux",
            arch="x86_64",
            default_shell="/bin/sh",
            user="tester",
        )

    async def create_pty(self, options: PtyOptions) -> FakePty:
        self.pty_options.append(options)
        if self.create_failures:
            self.create_failures -= 1
            raise OSError("out of pty devices")

        pty = FakePty(self.shell, pid=1000 + len(self.ptys))
        self.ptys.append(pty)
        if self.exit_on_start:
            asyncio.get_running_loop().call_later(0.01, pty.exit, 1)
        return pty

    async def execute(
        self, command: str, options: ExecuteOptions | None = None
    ) -> ExecuteResult:
        output, code = self.shell.run(command)
        return ExecuteResult(
            stdout=output, stderr="", exit_code=code, command=command, duration=0.0
        )

    def get_default_shell(self) -> str:
        return "/bin/sh"

    def get_default_cwd(self) -> str:
        return "/work"


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def backend(shell: FakeShell) -> FakeBackend:
    return FakeBackend(shell)


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        default_timeout=2.0,
        startup_delay=0.0,
        settle_delay=0.0,
        write_delay=0.0,
        trailing_delay=0.01,
    )


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(backend: FakeBackend, session_config: SessionConfig, events: EventBus) -> SessionManager:
    return SessionManager(backend, session_config, events=events)


@pytest.fixture
def poller(manager: SessionManager, events: EventBus) -> OutputPoller:
    return OutputPoller(manager, PollingConfig(timeout=2.0), events=events)


@pytest.fixture
def tailer(manager: SessionManager, events: EventBus) -> LogTailer:
    return LogTailer(manager, TailConfig(command_timeout=1.0, size_timeout=1.0), events=events)
