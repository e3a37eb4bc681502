"""Session data model."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from shellpilot.pty.backend import Backend, PtyHandle
from shellpilot.session.buffer import CaptureBuffer


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(enum.StrEnum):
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class SessionOptions:
    """What to allocate for a new session. Unset fields use backend/config defaults."""

    id: str | None = None
    name: str | None = None
    cwd: str | None = None
    env: dict[str, str] | None = None
    shell: str | None = None
    cols: int | None = None
    rows: int | None = None


@dataclass
class Session:
    """One live shell: a pseudo-terminal process plus its capture buffer.

    The process is owned exclusively by the session and is killed when the
    session closes. The backend is shared.
    """

    id: str
    name: str
    backend: Backend
    process: PtyHandle
    buffer: CaptureBuffer
    cwd: str
    env: dict[str, str] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.INITIALIZING
    last_command: str = ""
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    error: str | None = None

    # Command-protocol state
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    pending_end_marker: str | None = field(default=None, repr=False)
    end_seen: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            name=self.name,
            status=self.status,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
            cwd=self.cwd,
            last_command=self.last_command,
        )


@dataclass
class SessionInfo:
    """Read-only listing view of a session."""

    id: str
    name: str
    status: SessionStatus
    created_at: datetime
    last_activity_at: datetime
    cwd: str
    last_command: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity_at.isoformat(),
            "cwd": self.cwd,
            "last_command": self.last_command,
        }


@dataclass
class CommandContext:
    """One request to run a command in a session."""

    session_id: str
    command: str
    timeout: float | None = None


@dataclass
class CommandResult:
    """Outcome of one command. ``duration`` is seconds."""

    session_id: str
    command: str
    output: str
    exit_code: int | None
    success: bool
    duration: float
    timed_out: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "command": self.command,
            "output": self.output,
            "exit_code": self.exit_code,
            "success": self.success,
            "duration": round(self.duration, 3),
            "timed_out": self.timed_out,
            "error": self.error,
        }
