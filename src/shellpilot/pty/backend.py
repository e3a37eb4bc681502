"""Backend boundary — what the session core needs from an execution host."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable


@dataclass
class PtyOptions:
    """Options for allocating a pseudo-terminal process."""

    shell: str
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 160
    rows: int = 40
    term: str = "dumb"


@dataclass
class ExecuteOptions:
    """Options for a one-shot, non-session command."""

    cwd: str | None = None
    timeout: float = 30.0
    env: dict[str, str] = field(default_factory=dict)
    input: str | None = None


@dataclass
class ExecuteResult:
    """Result of a one-shot command."""

    stdout: str
    stderr: str
    exit_code: int | None
    command: str
    duration: float
    timed_out: bool = False
    cwd: str | None = None


@dataclass
class SystemInfo:
    """Host description reported by a backend."""

    backend: str
    os: str
    arch: str
    default_shell: str
    os_version: str | None = None
    kernel: str | None = None
    hostname: str | None = None
    user: str | None = None
    home_dir: str | None = None
    total_memory: int | None = None
    free_memory: int | None = None
    docker: dict[str, Any] | None = None


@runtime_checkable
class PtyHandle(Protocol):
    """A live pseudo-terminal process owned by exactly one session."""

    @property
    def pid(self) -> int | None: ...

    def on_data(self, listener: Callable[[str], None]) -> None: ...

    def remove_data_listener(self, listener: Callable[[str], None]) -> None: ...

    def on_exit(self, listener: Callable[[int | None], None]) -> None: ...

    def write(self, text: str) -> None: ...

    def kill(self) -> None: ...


@runtime_checkable
class Backend(Protocol):
    """Protocol every execution backend implements."""

    type: str

    async def is_available(self) -> bool: ...

    async def get_system_info(self) -> SystemInfo: ...

    async def create_pty(self, options: PtyOptions) -> PtyHandle: ...

    async def execute(
        self, command: str, options: ExecuteOptions | None = None
    ) -> ExecuteResult: ...

    def get_default_shell(self) -> str: ...

    def get_default_cwd(self) -> str: ...
