"""Persistence boundaries for forms and subscriptions.

The core never stores anything itself; it talks to a FormRepository and a
SubscriptionRepository. This module defines both contracts as Protocols and
ships thread-safe in-memory implementations used by tests and by embedders
that do not need a database.

The in-memory repositories hand out deep copies, so a caller holding a form
never observes a concurrent edit half-applied, and they serialize writes
behind a lock. There is no optimistic versioning: for concurrent status
updates the last writer wins.
"""

import copy
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Union

from typing_extensions import Protocol, runtime_checkable

from dynaform.errors import NotFound
from dynaform.forms import FormDefinition
from dynaform.state_machine import Subscription
from dynaform.types import SubscriptionStatus, utc_now

logger = logging.getLogger(__name__)


@runtime_checkable
class FormRepository(Protocol):
    """Storage contract for form definitions."""

    def get_active_forms(self) -> List[FormDefinition]:
        ...

    def get_all_forms(self) -> List[FormDefinition]:
        ...

    def get_form_by_id(self, form_id: int) -> FormDefinition:
        """Raises NotFound if the form does not exist."""
        ...

    def save(self, form: FormDefinition) -> FormDefinition:
        """Insert or replace a form; assigns IDs to the form and its new fields."""
        ...

    def delete(self, form_id: int) -> None:
        """Raises NotFound if the form does not exist."""
        ...


@runtime_checkable
class SubscriptionRepository(Protocol):
    """Storage contract for subscriptions."""

    def create(self, subscription: Subscription) -> Subscription:
        ...

    def get_by_id(self, subscription_id: int) -> Subscription:
        """Raises NotFound if the subscription does not exist."""
        ...

    def update_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        updated_at: Optional[datetime] = None,
    ) -> Subscription:
        """Raises NotFound if the subscription does not exist."""
        ...

    def list_by(
        self,
        form_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        ...


class InMemoryFormRepository:
    """FormRepository backed by a dict."""

    def __init__(self) -> None:
        self._forms: Dict[int, FormDefinition] = {}
        self._next_form_id = 1
        self._next_field_id = 1
        self._lock = threading.RLock()

    def get_active_forms(self) -> List[FormDefinition]:
        with self._lock:
            return [copy.deepcopy(f) for _, f in sorted(self._forms.items()) if f.is_active]

    def get_all_forms(self) -> List[FormDefinition]:
        with self._lock:
            return [copy.deepcopy(f) for _, f in sorted(self._forms.items())]

    def get_form_by_id(self, form_id: int) -> FormDefinition:
        with self._lock:
            form = self._forms.get(form_id)
            if form is None:
                raise NotFound(f"Form with id {form_id} not found")
            return copy.deepcopy(form)

    def save(self, form: FormDefinition) -> FormDefinition:
        with self._lock:
            stored = copy.deepcopy(form)
            if stored.id is None:
                stored.id = self._next_form_id
                self._next_form_id += 1
            for form_field in stored.fields:
                form_field.form_id = stored.id
                if form_field.id is None:
                    form_field.id = self._next_field_id
                    self._next_field_id += 1
            self._forms[stored.id] = stored
            logger.debug("Stored form %s with %d fields", stored.id, len(stored.fields))
            return copy.deepcopy(stored)

    def delete(self, form_id: int) -> None:
        with self._lock:
            if form_id not in self._forms:
                raise NotFound(f"Form with id {form_id} not found")
            del self._forms[form_id]


class InMemorySubscriptionRepository:
    """SubscriptionRepository backed by a dict."""

    def __init__(self) -> None:
        self._subscriptions: Dict[int, Subscription] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def create(self, subscription: Subscription) -> Subscription:
        with self._lock:
            stored = copy.deepcopy(subscription)
            if stored.id is None:
                stored = replace(stored, id=self._next_id)
                self._next_id += 1
            self._subscriptions[stored.id] = stored
            return copy.deepcopy(stored)

    def get_by_id(self, subscription_id: int) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFound(f"Subscription with id {subscription_id} not found")
            return copy.deepcopy(subscription)

    def update_status(
        self,
        subscription_id: int,
        status: Union[SubscriptionStatus, str],
        updated_at: Optional[datetime] = None,
    ) -> Subscription:
        with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                raise NotFound(f"Subscription with id {subscription_id} not found")
            stored = replace(
                current,
                status=SubscriptionStatus(status),
                updated_at=updated_at or utc_now(),
            )
            self._subscriptions[subscription_id] = stored
            return copy.deepcopy(stored)

    def list_by(
        self,
        form_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[Union[SubscriptionStatus, str]] = None,
    ) -> List[Subscription]:
        status = SubscriptionStatus(status) if status is not None else None
        with self._lock:
            return [
                copy.deepcopy(s) for _, s in sorted(self._subscriptions.items())
                if (form_id is None or s.form_id == form_id)
                and (user_id is None or s.user_id == user_id)
                and (status is None or s.status == status)
            ]


__all__ = [
    "FormRepository",
    "SubscriptionRepository",
    "InMemoryFormRepository",
    "InMemorySubscriptionRepository",
]
