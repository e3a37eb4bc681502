"""Log tailing — approximate ``tail -f`` by re-reading a file through a session.

There is no filesystem watch. Each read is a short shell command (``stat``,
``tail``, ``cat``) run through the session protocol, and the tail remembers
the file's byte size as its cursor. ``get_incremental_logs`` re-reads the
size *after* reading the new bytes, so anything appended between those two
commands is skipped.
"""

from __future__ import annotations

import logging
import re
import shlex
import uuid
from datetime import datetime, timezone

from shellpilot.config import TailConfig
from shellpilot.errors import TailNotFound
from shellpilot.polling.models import (
    LogEntry,
    LogLevel,
    LogTailState,
    PollingStatus,
    TailOptions,
)
from shellpilot.session.events import EventBus, EventType
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import CommandContext, CommandResult, utcnow

logger = logging.getLogger(__name__)

_ISO_LINE_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?)\s*(.*)$"
)
_LEVEL_LINE_RE = re.compile(r"^\[(\w+)\]\s*(.*)$")
_SIZE_RE = re.compile(r"(\d+)\s*$")

_BRACKET_LEVELS: dict[str, LogLevel] = {
    "trace": LogLevel.DEBUG,
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "notice": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "warning": LogLevel.WARN,
    "err": LogLevel.ERROR,
    "error": LogLevel.ERROR,
    "fatal": LogLevel.ERROR,
    "critical": LogLevel.ERROR,
}


def detect_log_level(content: str) -> LogLevel:
    """Guess severity from keywords; first match wins, error before warn before debug."""
    lower = content.lower()
    if "err" in lower or "fatal" in lower:
        return LogLevel.ERROR
    if "warn" in lower:
        return LogLevel.WARN
    if "debug" in lower or "trace" in lower:
        return LogLevel.DEBUG
    return LogLevel.INFO


def _parse_timestamp(raw: str) -> datetime | None:
    try:
        ts = datetime.fromisoformat(raw.replace(",", "."))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _explicit_level(text: str) -> tuple[LogLevel, str] | None:
    match = _LEVEL_LINE_RE.match(text)
    if match is None:
        return None
    level = _BRACKET_LEVELS.get(match.group(1).lower())
    if level is None:
        return None
    return level, match.group(2)


def parse_log_line(line: str, received_at: datetime | None = None) -> LogEntry:
    """Turn one log line into an entry.

    Tries, in order: an ISO-8601 timestamp prefix, a ``[LEVEL] message``
    prefix, then falls back to the raw line stamped with ``received_at``.
    """
    received_at = received_at or utcnow()

    iso = _ISO_LINE_RE.match(line)
    if iso:
        ts = _parse_timestamp(iso.group(1))
        if ts is not None:
            content = iso.group(2)
            explicit = _explicit_level(content)
            level = explicit[0] if explicit else detect_log_level(content)
            return LogEntry(timestamp=ts, content=content, level=level)

    explicit = _explicit_level(line)
    if explicit:
        level, message = explicit
        return LogEntry(timestamp=received_at, content=message, level=level)

    return LogEntry(timestamp=received_at, content=line, level=detect_log_level(line))


def parse_log_lines(text: str, received_at: datetime | None = None) -> list[LogEntry]:
    received_at = received_at or utcnow()
    return [parse_log_line(line, received_at) for line in text.split("\n") if line.strip()]


class LogTailer:
    """Follows files through shell sessions."""

    def __init__(
        self,
        session_manager: SessionManager,
        config: TailConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._sessions = session_manager
        self._config = config or TailConfig()
        self._events = events
        self._tails: dict[str, LogTailState] = {}

    async def start_tailing(
        self,
        session_id: str,
        file_path: str,
        options: TailOptions | None = None,
    ) -> str:
        """Begin following ``file_path`` from its current end.

        When ``lines`` > 0 the last N lines are read once and kept on the
        state as ``initial_lines``.

        Raises:
            SessionNotFound: no live session has this id.
        """
        options = options or TailOptions()
        self._sessions.require_session(session_id)

        state = LogTailState(
            id=uuid.uuid4().hex,
            file_path=file_path,
            session_id=session_id,
            follow=self._config.follow if options.follow is None else options.follow,
        )
        self._tails[state.id] = state

        size = await self._get_file_size(session_id, file_path)
        if size is not None:
            state.read_position = size

        lines = self._config.lines if options.lines is None else options.lines
        if lines > 0:
            result = await self._run(
                session_id, f"tail -n {lines} {shlex.quote(file_path)}"
            )
            if result.success:
                state.initial_lines = parse_log_lines(result.output)
            else:
                self._fail(state, result, "Failed to read initial log lines")

        logger.info(
            "Tail %s started on %s (session=%s, offset=%d)",
            state.id,
            file_path,
            session_id,
            state.read_position,
        )
        if self._events:
            self._events.send(
                EventType.TAIL_STARTED, tail_id=state.id, file_path=file_path
            )
        return state.id

    async def get_logs(self, tail_id: str, since: datetime | None = None) -> list[LogEntry]:
        """Re-read the whole file, optionally keeping entries at or after ``since``."""
        state = self._require(tail_id)
        self._sessions.require_session(state.session_id)

        result = await self._run(state.session_id, f"cat {shlex.quote(state.file_path)}")
        if not result.success:
            self._fail(state, result, "Failed to read log file")
            return []

        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        entries = [
            entry
            for entry in parse_log_lines(result.output)
            if since is None or entry.timestamp >= since
        ]
        state.last_updated_at = utcnow()
        return entries

    async def get_incremental_logs(self, tail_id: str) -> list[LogEntry]:
        """Read only what was appended since the last read."""
        state = self._require(tail_id)
        self._sessions.require_session(state.session_id)

        result = await self._run(
            state.session_id,
            f"tail -c +{state.read_position + 1} {shlex.quote(state.file_path)}",
        )
        if not result.success:
            self._fail(state, result, "Failed to read log file")
            return []

        new_size = await self._get_file_size(state.session_id, state.file_path)
        if new_size is not None:
            logger.debug(
                "Tail %s cursor %d -> %d", state.id, state.read_position, new_size
            )
            state.read_position = new_size

        state.last_updated_at = utcnow()
        return parse_log_lines(result.output)

    async def stop_tailing(self, tail_id: str) -> None:
        """Mark a tail stopped. Unknown ids are ignored."""
        state = self._tails.get(tail_id)
        if state is None:
            return

        state.status = PollingStatus.STOPPED
        state.last_updated_at = utcnow()
        logger.info("Tail %s stopped", tail_id)
        if self._events:
            self._events.send(EventType.TAIL_STOPPED, tail_id=tail_id)

    def get_tail(self, tail_id: str) -> LogTailState | None:
        return self._tails.get(tail_id)

    def get_active_tails(self) -> list[LogTailState]:
        return [t for t in self._tails.values() if t.status == PollingStatus.RUNNING]

    def cleanup_stopped(self) -> int:
        """Forget every stopped or failed tail. Returns the count."""
        finished = [
            tid
            for tid, t in self._tails.items()
            if t.status in (PollingStatus.STOPPED, PollingStatus.ERROR)
        ]
        for tid in finished:
            del self._tails[tid]
        return len(finished)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, tail_id: str) -> LogTailState:
        state = self._tails.get(tail_id)
        if state is None:
            raise TailNotFound(tail_id)
        return state

    async def _run(
        self, session_id: str, command: str, timeout: float | None = None
    ) -> CommandResult:
        return await self._sessions.execute_command(
            CommandContext(
                session_id=session_id,
                command=command,
                timeout=timeout or self._config.command_timeout,
            )
        )

    async def _get_file_size(self, session_id: str, file_path: str) -> int | None:
        quoted = shlex.quote(file_path)
        result = await self._run(
            session_id,
            f"stat -c %s {quoted} 2>/dev/null || wc -c < {quoted}",
            timeout=self._config.size_timeout,
        )
        if not result.success:
            return None
        match = _SIZE_RE.search(result.output.strip())
        return int(match.group(1)) if match else None

    def _fail(self, state: LogTailState, result: CommandResult, default: str) -> None:
        state.status = PollingStatus.ERROR
        state.error = result.error or default
        state.last_updated_at = utcnow()
        logger.warning("Tail %s on %s failed: %s", state.id, state.file_path, state.error)
