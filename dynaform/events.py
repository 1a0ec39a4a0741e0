"""Audit events for form authoring and subscription review.

Forms carry a plain ``is_active`` flag and subscriptions a plain ``status``;
neither keeps history. The audit trail lives here instead: every authoring
change and every status transition can be emitted as an immutable
AuditEvent through an EventEmitter, and an EventLog listener keeps them in an
append-only list.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dynaform.types import Actor, EventType, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """A single audit record.

    Attributes:
        event_id: Unique identifier (e.g., "evt_3f2a...")
        type: Event type
        subject_id: ID of the form or subscription this event is about
        ts: UTC timestamp
        actor: Actor who triggered the event
        payload: Optional event-specific data (e.g., from/to status)

    Examples:
        >>> from dynaform.types import Role
        >>> event = AuditEvent.create(
        ...     EventType.FORM_CREATED, subject_id=1, actor=Actor(user_id=1, role=Role.ADMIN)
        ... )
        >>> event.type.value
        'form.created'
    """
    event_id: str
    type: EventType
    subject_id: Optional[int]
    ts: datetime
    actor: Actor
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    @classmethod
    def create(
        cls,
        type: EventType,
        subject_id: Optional[int],
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
        ts: Optional[datetime] = None,
    ) -> "AuditEvent":
        """Build an event with a fresh ID and the current time."""
        return cls(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=type,
            subject_id=subject_id,
            ts=ts or utc_now(),
            actor=actor,
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary; timestamp as ISO 8601."""
        result: Dict[str, Any] = {
            "event_id": self.event_id,
            "type": self.type.value,
            "subject_id": self.subject_id,
            "ts": self.ts.isoformat(),
            "actor": self.actor.to_dict(),
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON suitable for appending to a JSONL audit file."""
        return json.dumps(self.to_dict(), separators=(',', ':'))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        """Create AuditEvent from dictionary."""
        return cls(
            event_id=data["event_id"],
            type=EventType(data["type"]),
            subject_id=data.get("subject_id"),
            ts=parse_timestamp(data["ts"]),
            actor=Actor.from_dict(data["actor"]),
            payload=data.get("payload"),
        )


EventListener = Callable[[AuditEvent], None]
"""Listeners are called synchronously when events are emitted."""


class EventEmitter:
    """Dispatches audit events to registered listeners.

    Type-specific listeners run first, then wildcard listeners, each group in
    registration order. A failing listener is logged and does not prevent
    the others from running.
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type; unknown listeners are ignored."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe a wildcard listener; unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: AuditEvent) -> None:
        """Dispatch an event to all registered listeners."""
        for listener in list(self._listeners.get(event.type, [])) + list(self._any_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Audit listener %r failed on %s", listener, event.type.value)

    def clear(self) -> None:
        """Remove every listener, typed and wildcard."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all listeners (including wildcard)."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(ls) for ls in self._listeners.values())


class EventLog:
    """Append-only in-memory audit trail.

    Examples:
        >>> emitter = EventEmitter()
        >>> log = EventLog(emitter)
        >>> len(log)
        0
    """

    def __init__(self, emitter: Optional[EventEmitter] = None):
        self._events: List[AuditEvent] = []
        if emitter is not None:
            emitter.on_any(self.append)

    def append(self, event: AuditEvent) -> None:
        """Record an event; usable directly as an EventEmitter listener."""
        self._events.append(event)

    def events(
        self,
        subject_id: Optional[int] = None,
        type: Optional[EventType] = None,
    ) -> List[AuditEvent]:
        """Recorded events in emission order, optionally filtered."""
        return [
            e for e in self._events
            if (subject_id is None or e.subject_id == subject_id)
            and (type is None or e.type == type)
        ]

    def __len__(self) -> int:
        return len(self._events)


__all__ = [
    "AuditEvent",
    "EventListener",
    "EventEmitter",
    "EventLog",
]
