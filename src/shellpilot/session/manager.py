"""Session store and the command-completion protocol.

A shell gives no structured "command finished, exit code N" signal, so
``execute_command`` frames each command itself. It writes four lines to the
pseudo-terminal:

    echo '<START>'
    <command>
    echo '<EXIT>'$?
    echo '<END>'

and waits until ``<END>`` appears at the start of a line in the capture
buffer. The region between the last ``<START>`` and the last ``<END>`` is
the command's output; the digits after ``<EXIT>`` are its exit code.

Known limitations, kept deliberately:

* a command that times out keeps running in the shell; the next command in
  that session may see its late output
* markers are unique only to the millisecond
* a shell that exits mid-command closes the session; the waiting call
  returns only when its own timeout elapses
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
import time
import uuid

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shellpilot.config import SessionConfig
from shellpilot.errors import (
    CommandEmpty,
    MaxSessionsReached,
    SessionAlreadyExists,
    SessionBusy,
    SessionClosed,
    SessionCreateFailed,
    SessionNotFound,
)
from shellpilot.output import Markers, clean_command_output, clean_output
from shellpilot.pty.backend import Backend, PtyHandle, PtyOptions
from shellpilot.session.buffer import CaptureBuffer
from shellpilot.session.events import EventBus, EventType
from shellpilot.session.models import (
    CommandContext,
    CommandResult,
    Session,
    SessionInfo,
    SessionOptions,
    SessionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


@retry(
    retry=retry_if_exception_type(OSError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _create_pty_with_retry(backend: Backend, options: PtyOptions) -> PtyHandle:
    """Allocate a pseudo-terminal, retrying transient OS-level failures."""
    return await backend.create_pty(options)


class SessionManager:
    """Owns every live session, keyed by id.

    Enforces the session limit, wires each pseudo-terminal's output into its
    session's capture buffer, and removes sessions whose shell exits.
    """

    def __init__(
        self,
        backend: Backend,
        config: SessionConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or SessionConfig()
        self._events = events
        self._sessions: dict[str, Session] = {}
        # Ids being created right now; they count against capacity
        self._reserved: set[str] = set()

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def backend(self) -> Backend:
        return self._backend

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(self, options: SessionOptions | None = None) -> Session:
        """Allocate a new shell session.

        Raises:
            MaxSessionsReached: the store is at capacity.
            SessionAlreadyExists: ``options.id`` names a live session.
            SessionCreateFailed: the backend could not start the shell.
        """
        options = options or SessionOptions()

        if len(self._sessions) + len(self._reserved) >= self._config.max_sessions:
            raise MaxSessionsReached(self._config.max_sessions)

        session_id = options.id or uuid.uuid4().hex
        if session_id in self._sessions or session_id in self._reserved:
            raise SessionAlreadyExists(session_id)

        self._reserved.add(session_id)
        try:
            session = await self._start_session(session_id, options)
        finally:
            self._reserved.discard(session_id)

        self._sessions[session_id] = session
        logger.info(
            "Session %s (%s) ready: pid=%s cwd=%s",
            session.id,
            session.name,
            session.process.pid,
            session.cwd,
        )
        if self._events:
            self._events.send(
                EventType.SESSION_CREATED, session_id=session.id, name=session.name
            )
        return session

    async def _start_session(self, session_id: str, options: SessionOptions) -> Session:
        cwd = options.cwd or self._backend.get_default_cwd()
        pty_options = PtyOptions(
            shell=options.shell or self._backend.get_default_shell(),
            cwd=cwd,
            env=options.env or {},
            cols=options.cols or self._config.cols,
            rows=options.rows or self._config.rows,
        )

        try:
            process = await _create_pty_with_retry(self._backend, pty_options)
        except Exception as e:
            logger.error("Failed to allocate PTY for session %s: %s", session_id, e)
            raise SessionCreateFailed(str(e), e) from e

        session = Session(
            id=session_id,
            name=options.name or f"session-{session_id[:8]}",
            backend=self._backend,
            process=process,
            buffer=CaptureBuffer(self._config.max_buffer_size),
            cwd=cwd,
            env=dict(options.env or {}),
        )

        # Listeners go on before anything can be written
        process.on_data(lambda data: self._handle_output(session, data))
        process.on_exit(lambda code: self._handle_exit(session, code))

        await asyncio.sleep(self._config.startup_delay)

        if session.status == SessionStatus.CLOSED:
            raise SessionCreateFailed(session.error or "shell exited during startup")

        session.status = SessionStatus.READY
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> Session:
        """Like ``get_session`` but raises ``SessionNotFound``."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def get_or_create_session(
        self, session_id: str = "default", options: SessionOptions | None = None
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            options = dataclasses.replace(options or SessionOptions(), id=session_id)
            session = await self.create_session(options)
        return session

    def list_sessions(self) -> list[SessionInfo]:
        return [s.info() for s in self._sessions.values()]

    async def close_session(self, session_id: str) -> None:
        """Kill a session's shell and forget it. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        try:
            session.process.kill()
        except Exception as e:
            logger.warning("Error killing session %s: %s", session_id, e)

        session.status = SessionStatus.CLOSED
        logger.info("Session %s closed", session_id)
        if self._events:
            self._events.send(EventType.SESSION_CLOSED, session_id=session_id)

    async def close_all_sessions(self) -> None:
        """Kill all sessions. Called on shutdown."""
        for session_id in list(self._sessions.keys()):
            await self.close_session(session_id)
        logger.info("All sessions closed")

    # ------------------------------------------------------------------
    # Command protocol
    # ------------------------------------------------------------------

    async def execute_command(self, context: CommandContext) -> CommandResult:
        """Run one command to completion inside a session.

        The session is created on demand. A timeout is reported in the result
        (``timed_out=True``), never raised.

        Raises:
            CommandEmpty: the command is empty or whitespace.
            SessionBusy: another command is in flight in this session.
            SessionClosed: the session's shell has gone away.
        """
        if not context.command or not context.command.strip():
            raise CommandEmpty()

        session = await self.get_or_create_session(context.session_id)

        if session.status == SessionStatus.BUSY or session.lock.locked():
            raise SessionBusy(session.id)
        if session.status == SessionStatus.CLOSED:
            raise SessionClosed(session.id)

        # An uncontended acquire does not yield, so the check above and
        # taking the lock are one step.
        async with session.lock:
            return await self._run_command(session, context)

    async def _run_command(self, session: Session, context: CommandContext) -> CommandResult:
        started = time.monotonic()
        timeout = self._config.default_timeout if context.timeout is None else context.timeout
        deadline = started + timeout

        session.status = SessionStatus.BUSY
        session.last_command = context.command
        session.last_activity_at = utcnow()
        if self._events:
            self._events.send(
                EventType.COMMAND_STARTED, session_id=session.id, command=context.command
            )

        result: CommandResult | None = None
        try:
            session.buffer.clear()
            await asyncio.sleep(self._config.settle_delay)

            markers = Markers.generate(self._config.marker_prefix)
            logger.debug("Session %s markers: %s / %s", session.id, markers.start, markers.end)
            session.end_seen.clear()
            session.pending_end_marker = markers.end

            for i, line in enumerate(markers.writes(context.command)):
                if i:
                    await asyncio.sleep(self._config.write_delay)
                session.process.write(line)

            if not await self._wait_for_end(session, markers, deadline):
                logger.info(
                    "Session %s: command timed out after %.1fs: %s",
                    session.id,
                    timeout,
                    context.command,
                )
                result = CommandResult(
                    session_id=session.id,
                    command=context.command,
                    output="",
                    exit_code=None,
                    success=False,
                    duration=time.monotonic() - started,
                    timed_out=True,
                    error=f"Command timed out after {timeout}s",
                )
                return result

            # Let trailing output land
            await asyncio.sleep(self._config.trailing_delay)
            result = self._parse_result(session, context.command, markers, started)
            return result
        finally:
            session.pending_end_marker = None
            if session.status == SessionStatus.BUSY:
                session.status = SessionStatus.READY
            session.last_activity_at = utcnow()
            if self._events:
                self._events.send(
                    EventType.COMMAND_FINISHED,
                    session_id=session.id,
                    command=context.command,
                    exit_code=result.exit_code if result else None,
                    timed_out=result.timed_out if result else False,
                )

    async def _wait_for_end(self, session: Session, markers: Markers, deadline: float) -> bool:
        if _end_marker_re(markers.end).search(session.buffer.text):
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        try:
            await asyncio.wait_for(session.end_seen.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            return False
        return True

    def _parse_result(
        self, session: Session, command: str, markers: Markers, started: float
    ) -> CommandResult:
        output = session.buffer.text
        start_idx = output.rfind(markers.start)
        end_idx = output.rfind(markers.end)

        if start_idx == -1 or end_idx == -1 or start_idx >= end_idx:
            logger.debug("Session %s: marker order invalid, returning whole buffer", session.id)
            return CommandResult(
                session_id=session.id,
                command=command,
                output=clean_output(output),
                exit_code=0,
                success=True,
                duration=time.monotonic() - started,
            )

        exit_code = 0
        match = markers.exit_code_pattern().search(output)
        if match:
            exit_code = int(match.group(1))

        region = output[start_idx + len(markers.start) : end_idx]
        return CommandResult(
            session_id=session.id,
            command=command,
            output=clean_command_output(region, command, markers),
            exit_code=exit_code,
            success=exit_code == 0,
            duration=time.monotonic() - started,
        )

    # ------------------------------------------------------------------
    # PTY callbacks
    # ------------------------------------------------------------------

    def _handle_output(self, session: Session, data: str) -> None:
        session.buffer.append(data)
        session.last_activity_at = utcnow()

        marker = session.pending_end_marker
        if marker and not session.end_seen.is_set():
            # The marker may straddle two chunks
            window = session.buffer.read_tail(len(data) + len(marker) + 1)
            at_buffer_start = len(window) == len(session.buffer)
            if _end_marker_re(marker, at_buffer_start).search(window):
                session.end_seen.set()

    def _handle_exit(self, session: Session, exit_code: int | None) -> None:
        session.status = SessionStatus.CLOSED
        session.error = f"Process exited with code {exit_code}"
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        logger.info("Session %s shell exited (code=%s)", session.id, exit_code)
        if self._events:
            self._events.send(
                EventType.SESSION_EXITED, session_id=session.id, exit_code=exit_code
            )

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


def _end_marker_re(marker: str, anchored: bool = True) -> re.Pattern[str]:
    # Only the marker echo's *output* starts a line; the shell's echo of the
    # typed ``echo '<END>'`` has a quote in front of it.
    if anchored:
        return re.compile(r"(?:^|[\r\n])" + re.escape(marker))
    return re.compile(r"[\r\n]" + re.escape(marker))
