"""Event bus — broadcast session, process and tail lifecycle changes.

The session store, background poller and log tailer publish here when a bus
is supplied. Front-ends subscribe to react to things nobody is waiting on,
such as a shell exiting by itself.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_CREATED = "session_created"
    SESSION_CLOSED = "session_closed"
    SESSION_EXITED = "session_exited"
    COMMAND_STARTED = "command_started"
    COMMAND_FINISHED = "command_finished"
    PROCESS_STARTED = "process_started"
    PROCESS_FINISHED = "process_finished"
    TAIL_STARTED = "tail_started"
    TAIL_STOPPED = "tail_stopped"


@dataclass
class Event:
    """An event on the bus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Single-producer, multi-consumer broadcast."""

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[Event | None]] = []
        self._closed: bool = False

    def send(self, event_type: EventType, **data: Any) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        event = Event(type=event_type, data=data)
        for q in self._subscribers:
            q.put_nowait(event)

    def subscribe(self) -> asyncio.Queue[Event | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[Event | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the bus is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed
