"""Background processes — run a command without blocking, poll its output later."""

from __future__ import annotations

import asyncio
import logging
import uuid

from shellpilot.config import PollingConfig
from shellpilot.errors import ProcessNotFound, TerminalError
from shellpilot.polling.models import (
    BackgroundProcess,
    PollingOptions,
    PollingStatus,
    PollResult,
    ProcessInfo,
)
from shellpilot.session.buffer import CaptureBuffer
from shellpilot.session.events import EventBus, EventType
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import CommandContext, Session, utcnow

logger = logging.getLogger(__name__)

_INTERRUPT = "\x03"  # Ctrl+C


class OutputPoller:
    """Runs commands through the session protocol in the background.

    Each background process gets its own capture buffer, fed by a listener on
    the session's pseudo-terminal for as long as the command runs, and its own
    read cursor so callers can drain output incrementally.

    Records are never removed automatically; call ``cleanup_completed()``.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        config: PollingConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._sessions = session_manager
        self._config = config or PollingConfig()
        self._events = events
        self._processes: dict[str, BackgroundProcess] = {}

    async def start_process(
        self,
        session_id: str,
        command: str,
        options: PollingOptions | None = None,
    ) -> str:
        """Start ``command`` in an existing session and return the process id.

        Raises:
            SessionNotFound: no live session has this id.
        """
        options = options or PollingOptions()
        session = self._sessions.require_session(session_id)

        record = BackgroundProcess(
            id=uuid.uuid4().hex,
            session_id=session_id,
            command=command,
            buffer=CaptureBuffer(options.max_buffer_size or self._config.max_buffer_size),
            interval=options.interval or self._config.interval,
        )
        self._processes[record.id] = record

        session.process.on_data(record.append)
        record.task = asyncio.create_task(
            self._run(record, session, options.timeout or self._config.timeout)
        )

        logger.info("Background process %s started in %s: %s", record.id, session_id, command)
        if self._events:
            self._events.send(
                EventType.PROCESS_STARTED,
                process_id=record.id,
                session_id=session_id,
                command=command,
            )
        return record.id

    async def _run(self, record: BackgroundProcess, session: Session, timeout: float) -> None:
        try:
            if self._sessions.get_session(record.session_id) is not session:
                raise TerminalError(f"Session {record.session_id} closed before start")

            result = await self._sessions.execute_command(
                CommandContext(
                    session_id=record.session_id, command=record.command, timeout=timeout
                )
            )
            if record.status == PollingStatus.RUNNING:
                record.exit_code = result.exit_code
                record.status = (
                    PollingStatus.COMPLETED if result.success else PollingStatus.ERROR
                )
                record.error = result.error
        except TerminalError as e:
            logger.warning("Background process %s failed: %s", record.id, e.message)
            if record.status == PollingStatus.RUNNING:
                record.status = PollingStatus.ERROR
                record.error = e.message
        except Exception as e:
            logger.exception("Background process %s crashed", record.id)
            if record.status == PollingStatus.RUNNING:
                record.status = PollingStatus.ERROR
                record.error = str(e)
        finally:
            session.process.remove_data_listener(record.append)
            record.last_updated_at = utcnow()
            logger.info(
                "Background process %s finished: status=%s exit=%s",
                record.id,
                record.status,
                record.exit_code,
            )
            if self._events:
                self._events.send(
                    EventType.PROCESS_FINISHED,
                    process_id=record.id,
                    status=record.status.value,
                    exit_code=record.exit_code,
                )

    async def poll(self, process_id: str, incremental: bool = True) -> PollResult:
        """Read a process's captured output.

        Incremental mode returns only what arrived since the last poll. Full
        mode returns the whole buffer; ``has_new_content`` then says whether
        any of it is unread. Both advance the cursor to the end.

        Raises:
            ProcessNotFound: unknown process id.
        """
        record = self._processes.get(process_id)
        if record is None:
            raise ProcessNotFound(process_id)

        if incremental:
            output = record.buffer.read_from(record.read_position)
            has_new_content = len(output) > 0
        else:
            output = record.buffer.text
            has_new_content = len(output) > record.read_position
        record.read_position = len(record.buffer)

        now = utcnow()
        record.last_updated_at = now
        return PollResult(
            process_id=record.id,
            session_id=record.session_id,
            output=output,
            has_new_content=has_new_content,
            is_complete=record.status in (PollingStatus.COMPLETED, PollingStatus.ERROR),
            status=record.status,
            timestamp=now,
            exit_code=record.exit_code,
            error=record.error,
        )

    async def stop_process(self, process_id: str) -> None:
        """Interrupt a process and mark it stopped.

        Best effort: sends Ctrl+C to the shell, which may not end the command.
        Unknown ids and already-finished processes are left alone.
        """
        record = self._processes.get(process_id)
        if record is None or record.status.terminal:
            return

        session = self._sessions.get_session(record.session_id)
        if session is not None:
            try:
                session.process.write(_INTERRUPT)
            except (OSError, RuntimeError) as e:
                logger.warning("Could not interrupt process %s: %s", process_id, e)

        record.status = PollingStatus.STOPPED
        record.last_updated_at = utcnow()
        logger.info("Background process %s stopped", process_id)

    async def wait_for_completion(
        self, process_id: str, timeout: float | None = None
    ) -> PollingStatus:
        """Wait until the wrapped command returns. Returns the final status."""
        record = self._processes.get(process_id)
        if record is None:
            raise ProcessNotFound(process_id)
        if record.task is not None:
            await asyncio.wait_for(asyncio.shield(record.task), timeout=timeout)
        return record.status

    def get_process(self, process_id: str) -> BackgroundProcess | None:
        return self._processes.get(process_id)

    def get_active_processes(self) -> list[ProcessInfo]:
        return [
            p.info() for p in self._processes.values() if p.status == PollingStatus.RUNNING
        ]

    def get_all_processes(self) -> list[ProcessInfo]:
        return [p.info() for p in self._processes.values()]

    def cleanup_completed(self) -> int:
        """Forget every completed, failed or stopped process. Returns the count."""
        finished = [pid for pid, p in self._processes.items() if p.status.terminal]
        for pid in finished:
            del self._processes[pid]
        return len(finished)

    def __len__(self) -> int:
        return len(self._processes)
