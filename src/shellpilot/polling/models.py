"""Background process and log tail records."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from shellpilot.session.buffer import CaptureBuffer
from shellpilot.session.models import utcnow


class PollingStatus(enum.StrEnum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def terminal(self) -> bool:
        return self in (PollingStatus.COMPLETED, PollingStatus.ERROR, PollingStatus.STOPPED)


@dataclass
class PollingOptions:
    """Per-process overrides; ``None`` falls back to ``PollingConfig``."""

    interval: float | None = None
    timeout: float | None = None
    max_buffer_size: int | None = None


@dataclass
class BackgroundProcess:
    """A command running detached from its caller.

    ``buffer`` receives everything the session's shell prints while the
    command runs; ``read_position`` is how much of it ``poll()`` has already
    handed out. After any append, ``read_position <= len(buffer)``.
    """

    id: str
    session_id: str
    command: str
    buffer: CaptureBuffer
    interval: float
    status: PollingStatus = PollingStatus.RUNNING
    read_position: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)
    exit_code: int | None = None
    error: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    def append(self, data: str) -> None:
        trimmed = self.buffer.append(data)
        if trimmed:
            self.read_position = max(0, self.read_position - trimmed)
        self.last_updated_at = utcnow()

    def info(self) -> ProcessInfo:
        return ProcessInfo(
            id=self.id,
            session_id=self.session_id,
            command=self.command,
            status=self.status,
            created_at=self.created_at,
            last_updated_at=self.last_updated_at,
            output_length=len(self.buffer),
        )


@dataclass
class PollResult:
    process_id: str
    session_id: str
    output: str
    has_new_content: bool
    is_complete: bool
    status: PollingStatus
    timestamp: datetime
    exit_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "process_id": self.process_id,
            "session_id": self.session_id,
            "output": self.output,
            "has_new_content": self.has_new_content,
            "is_complete": self.is_complete,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "exit_code": self.exit_code,
            "error": self.error,
        }


@dataclass
class ProcessInfo:
    id: str
    session_id: str
    command: str
    status: PollingStatus
    created_at: datetime
    last_updated_at: datetime
    output_length: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "command": self.command,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated_at.isoformat(),
            "output_length": self.output_length,
        }


class LogLevel(enum.StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass
class TailOptions:
    """Per-tail overrides; ``None`` falls back to ``TailConfig``."""

    lines: int | None = None
    follow: bool | None = None


@dataclass
class LogEntry:
    timestamp: datetime
    content: str
    level: LogLevel = LogLevel.INFO

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "content": self.content,
        }


@dataclass
class LogTailState:
    """One followed file. ``read_position`` is a byte offset in the remote file."""

    id: str
    file_path: str
    session_id: str
    follow: bool = True
    status: PollingStatus = PollingStatus.RUNNING
    read_position: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)
    error: str | None = None
    initial_lines: list[LogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "session_id": self.session_id,
            "follow": self.follow,
            "status": self.status.value,
            "read_position": self.read_position,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated_at.isoformat(),
            "error": self.error,
        }
