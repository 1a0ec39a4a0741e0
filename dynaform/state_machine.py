"""Subscription status lifecycle.

A subscription is created once, in PENDING, by any authenticated actor. Its
submitted data and submission time never change afterwards; only the status
moves, and only reviewing actors (manager, admin) may move it.

The transition table is flat: a reviewer may set any status from
any status, including re-setting the current one or leaving a status that is
normally final (approved, rejected, cancelled). Every transition refreshes
``updated_at``.

Usage:
    >>> from dynaform.types import Actor, Role
    >>> lifecycle = SubscriptionLifecycle()
    >>> sub = lifecycle.create(form_id=1, data={"name": "Ada"}, actor=Actor(2, Role.USER))
    >>> sub.status
    <SubscriptionStatus.PENDING: 'pending'>
    >>> sub = lifecycle.set_status(sub, SubscriptionStatus.APPROVED, Actor(1, Role.MANAGER))
    >>> sub.status
    <SubscriptionStatus.APPROVED: 'approved'>
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Optional, Union

from dynaform.events import AuditEvent, EventEmitter
from dynaform.permissions import Capability, require_capability
from dynaform.types import Actor, EventType, SubscriptionStatus, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


# Statuses reached by a review decision. Informational only: nothing in the
# lifecycle refuses to move a subscription out of them.
TERMINAL_STATUSES: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.APPROVED,
    SubscriptionStatus.REJECTED,
    SubscriptionStatus.CANCELLED,
})

# Map target statuses to their corresponding event types
STATUS_TO_EVENT_TYPE: Dict[SubscriptionStatus, EventType] = {
    SubscriptionStatus.PENDING: EventType.SUBSCRIPTION_PENDING,
    SubscriptionStatus.APPROVED: EventType.SUBSCRIPTION_APPROVED,
    SubscriptionStatus.REJECTED: EventType.SUBSCRIPTION_REJECTED,
    SubscriptionStatus.CANCELLED: EventType.SUBSCRIPTION_CANCELLED,
}


def is_terminal(status: Union[SubscriptionStatus, str]) -> bool:
    """Whether a status is a review outcome rather than PENDING."""
    return SubscriptionStatus(status) in TERMINAL_STATUSES


@dataclass(frozen=True)
class Subscription:
    """One actor's submitted data against a form.

    Instances are immutable; status changes produce a new instance.

    Attributes:
        form_id: The form this data was submitted against
        user_id: The submitting user
        data: Submitted values keyed by field_name
        status: Current review status
        id: Repository-assigned identifier
        submitted_at: Creation time, never changes
        updated_at: Time of the last status change (or creation)
    """
    form_id: int
    user_id: int
    data: Dict[str, Any]
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    id: Optional[int] = None
    submitted_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not isinstance(self.status, SubscriptionStatus):
            object.__setattr__(self, "status", SubscriptionStatus(self.status))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "form_id": self.form_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "data": dict(self.data),
            "submitted_at": self.submitted_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subscription":
        """Create Subscription from dict."""
        return cls(
            id=data.get("id"),
            form_id=data["form_id"],
            user_id=data["user_id"],
            status=SubscriptionStatus(data.get("status", SubscriptionStatus.PENDING.value)),
            data=dict(data.get("data") or {}),
            submitted_at=parse_timestamp(data["submitted_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


def transition_event(before: Subscription, after: Subscription, actor: Actor) -> AuditEvent:
    """Build the audit event recording a status change.

    Args:
        before: The subscription as it was
        after: The subscription returned by SubscriptionLifecycle.set_status
        actor: The reviewing actor

    Returns:
        An event typed after the target status, stamped with ``after.updated_at``
    """
    return AuditEvent.create(
        STATUS_TO_EVENT_TYPE[after.status],
        subject_id=after.id,
        actor=actor,
        payload={"from_status": before.status.value, "to_status": after.status.value},
        ts=after.updated_at,
    )


class SubscriptionLifecycle:
    """Creates subscriptions and drives their status transitions.

    Attributes:
        emitter: Optional event emitter receiving one audit event per change
        clock: Source of the current time (UTC-aware datetimes)
    """

    def __init__(
        self,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.emitter = emitter
        self.clock = clock

    def create(self, form_id: int, data: Dict[str, Any], actor: Actor) -> Subscription:
        """Start a new subscription in PENDING.

        The data is copied, so later changes to the caller's dict do not leak
        into the subscription. Persisting it is the caller's job.

        Raises:
            Forbidden: If the actor's role cannot submit
        """
        require_capability(actor, Capability.SUBMIT)
        now = self.clock()
        return Subscription(
            form_id=form_id,
            user_id=actor.user_id,
            data=dict(data),
            status=SubscriptionStatus.PENDING,
            submitted_at=now,
            updated_at=now,
        )

    def set_status(
        self,
        subscription: Subscription,
        new_status: Union[SubscriptionStatus, str],
        actor: Actor,
    ) -> Subscription:
        """Move a subscription to a new status.

        Any status may be set from any status. The returned subscription has
        ``updated_at`` strictly later than the input's, a copy of its ``data``
        and the same ``submitted_at``.

        Args:
            subscription: The subscription to update
            new_status: Target status
            actor: The reviewing actor

        Returns:
            The updated subscription (the input is left untouched)

        Raises:
            Forbidden: If the actor is not a manager or admin
            ValueError: If new_status is not a known status
        """
        require_capability(actor, Capability.REVIEW_SUBSCRIPTIONS)
        new_status = SubscriptionStatus(new_status)

        old_status = subscription.status
        if is_terminal(old_status):
            logger.info(
                "Subscription %s leaves review outcome %s for %s",
                subscription.id, old_status.value, new_status.value,
            )

        now = self.clock()
        if now <= subscription.updated_at:
            now = subscription.updated_at + timedelta(microseconds=1)

        updated = replace(
            subscription, status=new_status, updated_at=now, data=dict(subscription.data)
        )
        logger.info(
            "Subscription %s: %s -> %s by user %s",
            subscription.id, old_status.value, new_status.value, actor.user_id,
        )

        if self.emitter is not None:
            self.emitter.emit(transition_event(subscription, updated, actor))
        return updated


__all__ = [
    "Subscription",
    "SubscriptionLifecycle",
    "TERMINAL_STATUSES",
    "STATUS_TO_EVENT_TYPE",
    "is_terminal",
    "transition_event",
]
