"""Core type definitions for Dynaform.

This module defines the fundamental types used throughout the package:
- FieldType: Supported form field types (the field type catalog)
- SubscriptionStatus: Lifecycle states for submissions
- Role: Closed set of actor roles
- EventType: Audit event types for the event stream
- ErrorCode: Stable codes carried by every DynaformError
- Actor: Identity of the caller performing an operation

These types form the contract between callers and the Dynaform runtime.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Union

from dateutil.parser import isoparse


class FieldType(str, Enum):
    """Supported form field types."""
    TEXT = "text"
    NUMBER = "number"
    TEXTAREA = "textarea"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"


# Field types whose accepted values come from a fixed option list
OPTION_FIELD_TYPES: FrozenSet[FieldType] = frozenset({
    FieldType.SELECT,
    FieldType.RADIO,
    FieldType.CHECKBOX,
})


def requires_options(field_type: Union[FieldType, str]) -> bool:
    """Return True if fields of this type must carry an option list.

    Examples:
        >>> requires_options(FieldType.SELECT)
        True
        >>> requires_options("text")
        False
    """
    return FieldType(field_type) in OPTION_FIELD_TYPES


class SubscriptionStatus(str, Enum):
    """Submission review states.

    PENDING is the initial state. APPROVED, REJECTED and CANCELLED are
    terminal in the sense that nothing moves a subscription out of them
    automatically; reviewers may still set any status.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Role(str, Enum):
    """Actor roles, lowest privilege first."""
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


class EventType(str, Enum):
    """Audit event types for the event stream."""
    FORM_CREATED = "form.created"
    FORM_UPDATED = "form.updated"
    FORM_DELETED = "form.deleted"
    FIELD_ADDED = "field.added"
    FIELD_UPDATED = "field.updated"
    FIELD_REMOVED = "field.removed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_PENDING = "subscription.pending"
    SUBSCRIPTION_APPROVED = "subscription.approved"
    SUBSCRIPTION_REJECTED = "subscription.rejected"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    VALIDATION_FAILED = "validation.failed"


class ErrorCode(str, Enum):
    """Stable error codes for DynaformError subclasses."""
    INVALID_FIELD_DEFINITION = "invalid_field_definition"
    DUPLICATE_OPTION_VALUE = "duplicate_option_value"
    REQUIRED_FIELD_MISSING = "required_field_missing"
    INVALID_FIELD_VALUE = "invalid_field_value"
    INVALID_OPTION_VALUE = "invalid_option_value"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    FORM_NOT_SUBMITTABLE = "form_not_submittable"


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, as supplied by the authentication layer.

    Attributes:
        user_id: Identifier of the authenticated user
        role: The user's role

    Examples:
        >>> Actor(user_id=7, role=Role.MANAGER).role
        <Role.MANAGER: 'manager'>
    """
    user_id: int
    role: Role

    def __post_init__(self):
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"user_id": self.user_id, "role": self.role.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Create Actor from dict."""
        return cls(user_id=data["user_id"], role=Role(data["role"]))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken to be UTC."""
    if value is None:
        return None
    ts = value if isinstance(value, datetime) else isoparse(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


__all__ = [
    "FieldType",
    "OPTION_FIELD_TYPES",
    "requires_options",
    "SubscriptionStatus",
    "Role",
    "EventType",
    "ErrorCode",
    "Actor",
    "utc_now",
    "parse_timestamp",
]
