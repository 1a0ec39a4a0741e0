"""Unit tests for audit events.

Tests cover:
- AuditEvent creation and serialization
- EventEmitter dispatch order and listener isolation
- EventLog filtering
- Events emitted by the subscription lifecycle
"""

import json
from datetime import datetime, timezone

import pytest

from dynaform.errors import Forbidden
from dynaform.events import AuditEvent, EventEmitter, EventLog
from dynaform.state_machine import SubscriptionLifecycle
from dynaform.types import Actor, EventType, Role, SubscriptionStatus


ADMIN = Actor(user_id=1, role=Role.ADMIN)
TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_event(type=EventType.FORM_CREATED, subject_id=1, payload=None):
    return AuditEvent.create(type, subject_id=subject_id, actor=ADMIN, payload=payload, ts=TS)


class TestAuditEvent:
    """Test AuditEvent construction and serialization."""

    def test_create_assigns_id_and_time(self):
        event = AuditEvent.create(EventType.FORM_CREATED, subject_id=5, actor=ADMIN)
        assert event.event_id.startswith("evt_")
        assert event.ts.tzinfo is not None
        assert event.subject_id == 5

    def test_ids_are_unique(self):
        assert make_event().event_id != make_event().event_id

    def test_to_dict(self):
        event = make_event(payload={"name": "Signup"})
        assert event.to_dict() == {
            "event_id": event.event_id,
            "type": "form.created",
            "subject_id": 1,
            "ts": "2024-01-02T03:04:05+00:00",
            "actor": {"user_id": 1, "role": "admin"},
            "payload": {"name": "Signup"},
        }

    def test_to_dict_omits_missing_payload(self):
        assert "payload" not in make_event().to_dict()

    def test_to_jsonl_is_single_line(self):
        line = make_event(payload={"a": 1}).to_jsonl()
        assert "\n" not in line
        assert json.loads(line)["payload"] == {"a": 1}

    def test_round_trip(self):
        event = make_event(EventType.SUBSCRIPTION_APPROVED, payload={"from_status": "pending"})
        assert AuditEvent.from_dict(event.to_dict()) == event

    def test_type_is_coerced(self):
        event = AuditEvent(
            event_id="evt_1", type="field.added", subject_id=None, ts=TS, actor=ADMIN,
        )
        assert event.type == EventType.FIELD_ADDED


class TestEventEmitter:
    """Test EventEmitter subscription and dispatch."""

    def test_typed_listener_only_sees_its_type(self):
        emitter = EventEmitter()
        seen = []
        emitter.on(EventType.FORM_DELETED, seen.append)
        emitter.emit(make_event(EventType.FORM_CREATED))
        emitter.emit(make_event(EventType.FORM_DELETED))
        assert [e.type for e in seen] == [EventType.FORM_DELETED]

    def test_typed_listeners_run_before_wildcards(self):
        emitter = EventEmitter()
        calls = []
        emitter.on_any(lambda e: calls.append("any"))
        emitter.on(EventType.FORM_CREATED, lambda e: calls.append("typed"))
        emitter.emit(make_event())
        assert calls == ["typed", "any"]

    def test_failing_listener_does_not_block_others(self, caplog):
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        emitter.on(EventType.FORM_CREATED, broken)
        emitter.on_any(seen.append)
        emitter.emit(make_event())

        assert len(seen) == 1
        assert "failed on form.created" in caplog.text

    def test_off_and_off_any(self):
        emitter = EventEmitter()
        seen = []
        emitter.on(EventType.FORM_CREATED, seen.append)
        emitter.on_any(seen.append)
        emitter.off(EventType.FORM_CREATED, seen.append)
        emitter.off_any(seen.append)
        emitter.emit(make_event())
        assert seen == []

    def test_off_unknown_listener_is_ignored(self):
        emitter = EventEmitter()
        emitter.off(EventType.FORM_CREATED, print)
        emitter.off_any(print)
        assert emitter.listener_count() == 0

    def test_listener_count_and_clear(self):
        emitter = EventEmitter()
        emitter.on(EventType.FORM_CREATED, print)
        emitter.on(EventType.FORM_CREATED, repr)
        emitter.on_any(print)
        assert emitter.listener_count(EventType.FORM_CREATED) == 2
        assert emitter.listener_count() == 3
        emitter.clear()
        assert emitter.listener_count() == 0


class TestEventLog:
    """Test the in-memory audit trail."""

    def test_attached_log_records_everything(self):
        emitter = EventEmitter()
        log = EventLog(emitter)
        emitter.emit(make_event(EventType.FORM_CREATED, subject_id=1))
        emitter.emit(make_event(EventType.FIELD_ADDED, subject_id=1))
        emitter.emit(make_event(EventType.FORM_CREATED, subject_id=2))
        assert len(log) == 3

    def test_filters(self):
        log = EventLog()
        log.append(make_event(EventType.FORM_CREATED, subject_id=1))
        log.append(make_event(EventType.FIELD_ADDED, subject_id=1))
        log.append(make_event(EventType.FORM_CREATED, subject_id=2))

        assert [e.type for e in log.events(subject_id=1)] == [
            EventType.FORM_CREATED, EventType.FIELD_ADDED,
        ]
        assert [e.subject_id for e in log.events(type=EventType.FORM_CREATED)] == [1, 2]
        assert log.events(subject_id=2, type=EventType.FIELD_ADDED) == []

    def test_events_returns_a_copy(self):
        log = EventLog()
        log.append(make_event())
        log.events().clear()
        assert len(log) == 1


class TestLifecycleEvents:
    """Test events emitted on status transitions."""

    @pytest.mark.parametrize("status,event_type", [
        (SubscriptionStatus.APPROVED, EventType.SUBSCRIPTION_APPROVED),
        (SubscriptionStatus.REJECTED, EventType.SUBSCRIPTION_REJECTED),
        (SubscriptionStatus.CANCELLED, EventType.SUBSCRIPTION_CANCELLED),
        (SubscriptionStatus.PENDING, EventType.SUBSCRIPTION_PENDING),
    ])
    def test_transition_emits_matching_event(self, status, event_type):
        emitter = EventEmitter()
        log = EventLog(emitter)
        lifecycle = SubscriptionLifecycle(emitter=emitter)
        sub = lifecycle.create(form_id=1, data={}, actor=Actor(2, Role.USER))

        updated = lifecycle.set_status(sub, status, ADMIN)

        (event,) = log.events()
        assert event.type == event_type
        assert event.actor == ADMIN
        assert event.ts == updated.updated_at
        assert event.payload == {"from_status": "pending", "to_status": status.value}

    def test_forbidden_transition_emits_nothing(self):
        emitter = EventEmitter()
        log = EventLog(emitter)
        lifecycle = SubscriptionLifecycle(emitter=emitter)
        user = Actor(2, Role.USER)
        sub = lifecycle.create(form_id=1, data={}, actor=user)

        with pytest.raises(Forbidden):
            lifecycle.set_status(sub, SubscriptionStatus.APPROVED, user)
        assert len(log) == 0
