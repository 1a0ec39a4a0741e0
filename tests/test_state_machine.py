"""Unit tests for the subscription lifecycle.

Tests cover:
- Creating subscriptions in PENDING
- Role-gated status transitions
- Permissive transitions (including out of review outcomes)
- Strictly increasing updated_at
- Serialization and deserialization
- Role capabilities
"""

from datetime import datetime, timedelta, timezone

import pytest

from dynaform.errors import Forbidden
from dynaform.permissions import Capability, has_capability, require_capability
from dynaform.state_machine import (
    STATUS_TO_EVENT_TYPE,
    Subscription,
    SubscriptionLifecycle,
    TERMINAL_STATUSES,
    is_terminal,
)
from dynaform.types import Actor, Role, SubscriptionStatus


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

USER = Actor(user_id=2, role=Role.USER)
MANAGER = Actor(user_id=1, role=Role.MANAGER)
ADMIN = Actor(user_id=3, role=Role.ADMIN)


class FixedClock:
    """Clock that returns a settable time."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def lifecycle(clock):
    return SubscriptionLifecycle(clock=clock)


@pytest.fixture
def pending(lifecycle):
    return lifecycle.create(form_id=7, data={"country": "us"}, actor=USER)


class TestCreate:
    """Test SubscriptionLifecycle.create."""

    def test_starts_pending(self, pending):
        """New subscriptions start in PENDING with matching timestamps."""
        assert pending.status == SubscriptionStatus.PENDING
        assert pending.form_id == 7
        assert pending.user_id == USER.user_id
        assert pending.submitted_at == pending.updated_at == T0
        assert pending.id is None

    @pytest.mark.parametrize("actor", [USER, MANAGER, ADMIN])
    def test_every_role_can_submit(self, lifecycle, actor):
        sub = lifecycle.create(form_id=1, data={}, actor=actor)
        assert sub.user_id == actor.user_id

    def test_data_is_copied(self, lifecycle):
        """Later changes to the caller's dict do not reach the subscription."""
        data = {"name": "Ada"}
        sub = lifecycle.create(form_id=1, data=data, actor=USER)
        data["name"] = "Grace"
        assert sub.data == {"name": "Ada"}


class TestSetStatus:
    """Test SubscriptionLifecycle.set_status."""

    def test_manager_approves(self, lifecycle, clock, pending):
        """A manager approving moves the status and refreshes updated_at."""
        clock.now = T0 + timedelta(minutes=5)
        approved = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        assert approved.status == SubscriptionStatus.APPROVED
        assert approved.updated_at == T0 + timedelta(minutes=5)
        assert approved.updated_at > pending.updated_at

    def test_admin_rejects(self, lifecycle, pending):
        rejected = lifecycle.set_status(pending, "rejected", ADMIN)
        assert rejected.status == SubscriptionStatus.REJECTED

    def test_user_is_forbidden(self, lifecycle, pending):
        """A plain user cannot review; the subscription stays pending."""
        with pytest.raises(Forbidden) as exc_info:
            lifecycle.set_status(pending, SubscriptionStatus.APPROVED, USER)
        assert exc_info.value.received == "user"
        assert exc_info.value.expected == ["admin", "manager"]
        assert pending.status == SubscriptionStatus.PENDING

    def test_input_is_not_modified(self, lifecycle, pending):
        lifecycle.set_status(pending, SubscriptionStatus.CANCELLED, MANAGER)
        assert pending.status == SubscriptionStatus.PENDING
        assert pending.updated_at == T0

    def test_data_and_submitted_at_are_kept(self, lifecycle, clock, pending):
        clock.now = T0 + timedelta(days=1)
        approved = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        assert approved.data == pending.data
        assert approved.submitted_at == pending.submitted_at
        assert approved.form_id == pending.form_id
        assert approved.user_id == pending.user_id

    def test_updated_at_strictly_increases_with_stalled_clock(self, lifecycle, pending):
        """Even when the clock does not move, updated_at goes forward."""
        first = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        second = lifecycle.set_status(first, SubscriptionStatus.REJECTED, MANAGER)
        assert pending.updated_at < first.updated_at < second.updated_at

    def test_updated_at_does_not_go_backwards(self, lifecycle, clock, pending):
        clock.now = T0 - timedelta(hours=1)
        updated = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        assert updated.updated_at > pending.updated_at

    def test_unknown_status_raises_value_error(self, lifecycle, pending):
        with pytest.raises(ValueError):
            lifecycle.set_status(pending, "archived", MANAGER)

    def test_user_with_unknown_status_is_forbidden(self, lifecycle, pending):
        """Authorization is checked before the target status is parsed."""
        with pytest.raises(Forbidden):
            lifecycle.set_status(pending, "archived", USER)

    def test_data_is_not_shared_with_input(self, lifecycle, pending):
        approved = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        assert approved.data == pending.data
        assert approved.data is not pending.data

        approved.data["country"] = "ca"
        assert pending.data == {"country": "us"}


class TestPermissiveTransitions:
    """Reviewers may set any status from any status."""

    @pytest.mark.parametrize("source", list(SubscriptionStatus))
    @pytest.mark.parametrize("target", list(SubscriptionStatus))
    def test_any_to_any(self, lifecycle, source, target):
        sub = Subscription(form_id=1, user_id=2, data={}, status=source,
                           submitted_at=T0, updated_at=T0)
        updated = lifecycle.set_status(sub, target, ADMIN)
        assert updated.status == target

    def test_approved_back_to_pending(self, lifecycle, pending):
        approved = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        reopened = lifecycle.set_status(approved, SubscriptionStatus.PENDING, MANAGER)
        assert reopened.status == SubscriptionStatus.PENDING

    def test_same_status_still_refreshes_timestamp(self, lifecycle, pending):
        again = lifecycle.set_status(pending, SubscriptionStatus.PENDING, MANAGER)
        assert again.status == SubscriptionStatus.PENDING
        assert again.updated_at > pending.updated_at


class TestTerminalStatuses:
    """Test review outcome detection."""

    @pytest.mark.parametrize("status", ["approved", "rejected", "cancelled"])
    def test_review_outcomes(self, status):
        assert is_terminal(status) is True
        assert SubscriptionStatus(status) in TERMINAL_STATUSES

    def test_pending_is_not_terminal(self):
        assert is_terminal(SubscriptionStatus.PENDING) is False

    def test_every_status_has_an_event_type(self):
        assert set(STATUS_TO_EVENT_TYPE) == set(SubscriptionStatus)


class TestSerialization:
    """Test Subscription.to_dict / from_dict."""

    def test_to_dict(self, pending):
        assert pending.to_dict() == {
            "id": None,
            "form_id": 7,
            "user_id": 2,
            "status": "pending",
            "data": {"country": "us"},
            "submitted_at": "2024-05-01T12:00:00+00:00",
            "updated_at": "2024-05-01T12:00:00+00:00",
        }

    def test_round_trip(self, lifecycle, pending):
        approved = lifecycle.set_status(pending, SubscriptionStatus.APPROVED, MANAGER)
        assert Subscription.from_dict(approved.to_dict()) == approved

    def test_from_dict_coerces_status(self):
        sub = Subscription.from_dict({
            "id": 4,
            "form_id": 1,
            "user_id": 2,
            "status": "cancelled",
            "data": {},
            "submitted_at": "2024-05-01T12:00:00Z",
            "updated_at": "2024-05-01T12:00:00Z",
        })
        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.submitted_at == T0

    def test_is_frozen(self, pending):
        with pytest.raises(AttributeError):
            pending.status = SubscriptionStatus.APPROVED


class TestPermissions:
    """Test role capabilities."""

    @pytest.mark.parametrize("role", list(Role))
    def test_every_role_submits(self, role):
        assert has_capability(role, Capability.SUBMIT) is True

    @pytest.mark.parametrize("capability", [Capability.AUTHOR_FORMS, Capability.REVIEW_SUBSCRIPTIONS])
    def test_user_cannot_author_or_review(self, capability):
        assert has_capability(Role.USER, capability) is False

    @pytest.mark.parametrize("role", ["manager", "admin"])
    @pytest.mark.parametrize("capability", [Capability.AUTHOR_FORMS, Capability.REVIEW_SUBSCRIPTIONS])
    def test_manager_and_admin_are_equivalent(self, role, capability):
        assert has_capability(role, capability) is True

    def test_unknown_role_raises(self):
        with pytest.raises(ValueError):
            has_capability("superuser", Capability.SUBMIT)

    def test_require_capability_message(self):
        with pytest.raises(Forbidden) as exc_info:
            require_capability(USER, Capability.AUTHOR_FORMS)
        assert exc_info.value.message == "Role 'user' is not allowed to author forms"
        assert exc_info.value.to_dict()["code"] == "forbidden"
