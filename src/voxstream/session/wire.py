"""Session event bus between the controller and whatever renders it.

The controller never talks to a terminal or widget directly. It publishes
``WireEvent``s here; the CLI (or any other front end) subscribes and
renders them. A subscriber may ask for a subset of event types, e.g. a
status line that only cares about ``STREAM_BEGIN`` / ``STREAM_END``.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSIONS_CHANGED = "sessions_changed"
    SESSION_ACTIVE = "session_active"
    MESSAGES_CHANGED = "messages_changed"
    STREAM_BEGIN = "stream_begin"
    CHUNK = "chunk"
    STREAM_END = "stream_end"
    GUARD_RELEASED = "guard_released"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """One notification from the session controller."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.data.get("session_id")


@dataclass
class _Subscription:
    queue: asyncio.Queue[WireEvent | None]
    types: frozenset[EventType] | None = None

    def wants(self, event: WireEvent) -> bool:
        return self.types is None or event.type in self.types


class Wire:
    """Broadcast bus: one controller publishing, any number of subscribers.

    ``close()`` pushes a ``None`` sentinel to every subscriber and turns
    later sends into no-ops, so a consumer loop can simply stop on ``None``.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: WireEvent) -> None:
        if self._closed:
            return
        for sub in self._subscriptions:
            if sub.wants(event):
                sub.queue.put_nowait(event)

    # --- Session list and selection ---

    def send_sessions_changed(self, count: int) -> None:
        self.send(WireEvent(type=EventType.SESSIONS_CHANGED, data={"count": count}))

    def send_session_active(self, session_id: str | None) -> None:
        self.send(
            WireEvent(type=EventType.SESSION_ACTIVE, data={"session_id": session_id})
        )

    def send_messages_changed(self, session_id: str | None, count: int) -> None:
        self.send(
            WireEvent(
                type=EventType.MESSAGES_CHANGED,
                data={"session_id": session_id, "count": count},
            )
        )

    def send_guard_released(self, session_id: str) -> None:
        self.send(
            WireEvent(type=EventType.GUARD_RELEASED, data={"session_id": session_id})
        )

    # --- Streaming ---

    def send_stream_begin(self, session_id: str) -> None:
        self.send(WireEvent(type=EventType.STREAM_BEGIN, data={"session_id": session_id}))

    def send_chunk(self, session_id: str, composed: str) -> None:
        """``composed`` is the full composed string so far, not a delta."""
        self.send(
            WireEvent(
                type=EventType.CHUNK,
                data={"session_id": session_id, "composed": composed},
            )
        )

    def send_stream_end(self, session_id: str) -> None:
        self.send(WireEvent(type=EventType.STREAM_END, data={"session_id": session_id}))

    # --- Diagnostics ---

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    # --- Subscriptions ---

    def subscribe(
        self, types: Iterable[EventType] | None = None
    ) -> asyncio.Queue[WireEvent | None]:
        """Return a queue receiving every event, or only those in ``types``."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscriptions.append(
            _Subscription(q, frozenset(types) if types is not None else None)
        )
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.queue is not q]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.queue.put_nowait(None)
