"""Error taxonomy for session, process, and tail operations.

Precondition and capacity violations are raised as typed ``TerminalError``
subclasses. Timing outcomes (a command that never produced its end marker)
are *not* errors: they come back as structured results with
``timed_out=True``.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorCode(enum.StrEnum):
    # Sessions
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_ALREADY_EXISTS = "SESSION_ALREADY_EXISTS"
    SESSION_BUSY = "SESSION_BUSY"
    SESSION_CLOSED = "SESSION_CLOSED"
    MAX_SESSIONS_REACHED = "MAX_SESSIONS_REACHED"
    SESSION_CREATE_FAILED = "SESSION_CREATE_FAILED"

    # Commands
    COMMAND_TIMEOUT = "COMMAND_TIMEOUT"
    COMMAND_FAILED = "COMMAND_FAILED"
    COMMAND_EMPTY = "COMMAND_EMPTY"

    # Background processes and tails
    PROCESS_NOT_FOUND = "PROCESS_NOT_FOUND"
    PROCESS_ALREADY_RUNNING = "PROCESS_ALREADY_RUNNING"
    PROCESS_START_FAILED = "PROCESS_START_FAILED"
    TAIL_NOT_FOUND = "TAIL_NOT_FOUND"

    # Files (surfaced by collaborators)
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    FILE_WRITE_ERROR = "FILE_WRITE_ERROR"

    # Backends
    BACKEND_NOT_AVAILABLE = "BACKEND_NOT_AVAILABLE"
    BACKEND_ERROR = "BACKEND_ERROR"

    # General
    INVALID_PARAMETER = "INVALID_PARAMETER"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TerminalError(Exception):
    """Base class for every error raised by shellpilot."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class SessionNotFound(TerminalError):
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})


class SessionAlreadyExists(TerminalError):
    code = ErrorCode.SESSION_ALREADY_EXISTS

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session already exists: {session_id}", {"session_id": session_id}
        )


class SessionBusy(TerminalError):
    code = ErrorCode.SESSION_BUSY

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session is busy: {session_id}", {"session_id": session_id})


class SessionClosed(TerminalError):
    code = ErrorCode.SESSION_CLOSED

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session is closed: {session_id}", {"session_id": session_id})


class MaxSessionsReached(TerminalError):
    code = ErrorCode.MAX_SESSIONS_REACHED

    def __init__(self, max_sessions: int) -> None:
        super().__init__(
            f"Maximum number of sessions reached: {max_sessions}",
            {"max_sessions": max_sessions},
        )


class SessionCreateFailed(TerminalError):
    code = ErrorCode.SESSION_CREATE_FAILED

    def __init__(self, reason: str, error: BaseException | None = None) -> None:
        super().__init__(
            f"Failed to create session: {reason}",
            {"reason": reason, "original_error": str(error) if error else None},
        )


class CommandEmpty(TerminalError):
    code = ErrorCode.COMMAND_EMPTY

    def __init__(self) -> None:
        super().__init__("Command cannot be empty")


class ProcessNotFound(TerminalError):
    code = ErrorCode.PROCESS_NOT_FOUND

    def __init__(self, process_id: str) -> None:
        super().__init__(f"Process not found: {process_id}", {"process_id": process_id})


class TailNotFound(TerminalError):
    code = ErrorCode.TAIL_NOT_FOUND

    def __init__(self, tail_id: str) -> None:
        super().__init__(f"Tail not found: {tail_id}", {"tail_id": tail_id})


class FileReadError(TerminalError):
    code = ErrorCode.FILE_READ_ERROR

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read file: {reason}", {"path": path, "reason": reason})


class FileWriteError(TerminalError):
    code = ErrorCode.FILE_WRITE_ERROR

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write file: {reason}", {"path": path, "reason": reason}
        )


class BackendNotAvailable(TerminalError):
    code = ErrorCode.BACKEND_NOT_AVAILABLE

    def __init__(self, backend_name: str) -> None:
        super().__init__(
            f"Backend not available: {backend_name}", {"backend_name": backend_name}
        )


class BackendError(TerminalError):
    code = ErrorCode.BACKEND_ERROR

    def __init__(self, backend_name: str, reason: str) -> None:
        super().__init__(
            f"Backend error: {reason}", {"backend_name": backend_name, "reason": reason}
        )
