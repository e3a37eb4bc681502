"""Persistent shell sessions and the command-completion protocol."""

from shellpilot.session.buffer import CaptureBuffer
from shellpilot.session.events import Event, EventBus, EventType
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import (
    CommandContext,
    CommandResult,
    Session,
    SessionInfo,
    SessionOptions,
    SessionStatus,
)

__all__ = [
    "CaptureBuffer",
    "Event",
    "EventBus",
    "EventType",
    "SessionManager",
    "CommandContext",
    "CommandResult",
    "Session",
    "SessionInfo",
    "SessionOptions",
    "SessionStatus",
]
