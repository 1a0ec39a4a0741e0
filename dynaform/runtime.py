"""FormRuntime orchestrator.

The runtime wires the form model, the payload validator, the subscription
lifecycle, the repositories and the audit event stream into the operations
an application exposes to its transport layer. Every operation takes the
calling Actor and checks its role before touching storage.

Usage:
    >>> from dynaform.types import Actor, FieldType, Role
    >>> runtime = FormRuntime()
    >>> manager, user = Actor(1, Role.MANAGER), Actor(2, Role.USER)
    >>> form = runtime.create_form(manager, name="Newsletter")
    >>> field = runtime.add_field(manager, form.id, {"field_name": "email",
    ...                           "field_type": "text", "is_required": True})
    >>> sub = runtime.submit_form(user, form.id, {"email": "ada@example.com"})
    >>> sub.status.value
    'pending'
"""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from dynaform.config import Settings, get_settings
from dynaform.errors import FieldValidationError, FormNotSubmittable, NotFound
from dynaform.events import AuditEvent, EventEmitter
from dynaform.forms import FieldOption, FormDefinition, FormField
from dynaform.permissions import Capability, has_capability, require_capability
from dynaform.repository import (
    FormRepository,
    InMemoryFormRepository,
    InMemorySubscriptionRepository,
    SubscriptionRepository,
)
from dynaform.state_machine import Subscription, SubscriptionLifecycle, transition_event
from dynaform.types import Actor, EventType, SubscriptionStatus, utc_now
from dynaform.validation import SchemaValidator

logger = logging.getLogger(__name__)

FORM_ATTRIBUTES = ("name", "description", "is_active")
FIELD_ATTRIBUTES = ("field_name", "field_type", "is_required", "order", "options", "placeholder")


def _to_wire(value: Any) -> Any:
    """Convert enums and options inside a change set to their JSON form."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, FieldOption):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_wire(v) for k, v in value.items()}
    return value


def _check_attributes(changes: Dict[str, Any], allowed: tuple, what: str) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise TypeError(f"Cannot update {what} attribute(s): {', '.join(unknown)}")


class FormRuntime:
    """Application-facing operations over forms and subscriptions.

    Attributes:
        forms: Form storage
        subscriptions: Subscription storage
        settings: Package settings
        emitter: Audit event emitter; attach an EventLog or other listeners to it
        validator: Payload validator
        lifecycle: Subscription status state machine
    """

    def __init__(
        self,
        forms: Optional[FormRepository] = None,
        subscriptions: Optional[SubscriptionRepository] = None,
        settings: Optional[Settings] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.forms = forms if forms is not None else InMemoryFormRepository()
        self.subscriptions = (
            subscriptions if subscriptions is not None else InMemorySubscriptionRepository()
        )
        self.settings = settings or get_settings()
        self.emitter = emitter if emitter is not None else EventEmitter()
        self.validator = SchemaValidator(self.settings)
        self.lifecycle = SubscriptionLifecycle(clock=clock)
        self._clock = clock

    def _emit(
        self,
        type: EventType,
        subject_id: Optional[int],
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.emitter.emit(AuditEvent.create(type, subject_id, actor, payload, ts=self._clock()))

    @staticmethod
    def _new_field(field: Union[FormField, Dict[str, Any]], now: datetime) -> FormField:
        """Copy of a caller-supplied field, without an ID and stamped with ``now``."""
        if isinstance(field, FormField):
            return replace(field, id=None, created_at=now, updated_at=now)
        new_field = FormField.from_dict(field)
        new_field.id = None
        new_field.created_at = new_field.updated_at = now
        return new_field

    # Authoring

    def create_form(
        self,
        actor: Actor,
        name: str,
        description: Optional[str] = None,
        is_active: bool = True,
        fields: Optional[List[Union[FormField, Dict[str, Any]]]] = None,
    ) -> FormDefinition:
        """Create a form, optionally with an initial field list.

        Raises:
            Forbidden: If the actor cannot author forms
            InvalidFieldDefinition: If a field is malformed or its options disagree with its type
            DuplicateOptionValue: If a field repeats an option value
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        now = self._clock()
        form = FormDefinition.from_dict({
            "name": name,
            "description": description,
            "is_active": is_active,
            "created_by_user_id": actor.user_id,
        })
        form.created_at = form.updated_at = now
        for f in fields or []:
            form.add_field(self._new_field(f, now))
        form.validate_structure()

        saved = self.forms.save(form)
        logger.info("Form %s '%s' created by user %s", saved.id, saved.name, actor.user_id)
        self._emit(EventType.FORM_CREATED, saved.id, actor, {"name": saved.name})
        return saved

    def update_form(self, actor: Actor, form_id: int, **changes: Any) -> FormDefinition:
        """Change a form's name, description or is_active flag.

        Raises:
            Forbidden: If the actor cannot author forms
            NotFound: If the form does not exist
            InvalidFieldDefinition: If the new values are malformed (for example
                an empty or None name); form-level shape errors share the
                field definition error type and carry no field_name
            TypeError: If changes name anything other than the form attributes
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        _check_attributes(changes, FORM_ATTRIBUTES, "form")
        current = self.forms.get_form_by_id(form_id)

        wire = current.to_dict()
        wire.update(changes)
        updated = FormDefinition.from_dict(wire)
        updated.updated_at = self._clock()

        saved = self.forms.save(updated)
        logger.info("Form %s updated by user %s: %s", form_id, actor.user_id, sorted(changes))
        self._emit(EventType.FORM_UPDATED, form_id, actor, {"changes": _to_wire(dict(changes))})
        return saved

    def delete_form(self, actor: Actor, form_id: int) -> None:
        """Delete a form.

        Subscriptions submitted against it are left in place.

        Raises:
            Forbidden: If the actor cannot author forms
            NotFound: If the form does not exist
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        self.forms.delete(form_id)
        remaining = len(self.subscriptions.list_by(form_id=form_id))
        if remaining:
            logger.warning(
                "Form %s deleted with %d subscription(s) still referencing it",
                form_id, remaining,
            )
        logger.info("Form %s deleted by user %s", form_id, actor.user_id)
        self._emit(EventType.FORM_DELETED, form_id, actor, {"orphaned_subscriptions": remaining})

    def get_all_forms(self, actor: Actor) -> List[FormDefinition]:
        """All forms, active or not (authoring actors only)."""
        require_capability(actor, Capability.AUTHOR_FORMS)
        return self.forms.get_all_forms()

    def add_field(
        self,
        actor: Actor,
        form_id: int,
        field: Union[FormField, Dict[str, Any]],
    ) -> FormField:
        """Append a field to a form.

        Raises:
            Forbidden: If the actor cannot author forms
            NotFound: If the form does not exist
            InvalidFieldDefinition: If the field is malformed
            DuplicateOptionValue: If the field repeats an option value
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        form = self.forms.get_form_by_id(form_id)
        now = self._clock()
        form.add_field(self._new_field(field, now))
        form.validate_structure()
        form.updated_at = now

        saved = self.forms.save(form)
        stored = saved.fields[-1]
        logger.info("Field %s '%s' added to form %s", stored.id, stored.field_name, form_id)
        self._emit(EventType.FIELD_ADDED, form_id, actor, {
            "field_id": stored.id,
            "field_name": stored.field_name,
        })
        return stored

    def update_field(self, actor: Actor, form_id: int, field_id: int, **changes: Any) -> FormField:
        """Change any attribute of a field, including its type and options.

        Raises:
            Forbidden: If the actor cannot author forms
            NotFound: If the form or field does not exist
            InvalidFieldDefinition: If the resulting field is malformed
            DuplicateOptionValue: If the resulting field repeats an option value
            TypeError: If changes name anything other than the field attributes
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        _check_attributes(changes, FIELD_ATTRIBUTES, "field")
        form = self.forms.get_form_by_id(form_id)
        current = form.get_field(field_id)

        wire = current.to_dict()
        wire.update(_to_wire(dict(changes)))
        updated = FormField.from_dict(wire)
        updated.updated_at = self._clock()

        form.fields[form.fields.index(current)] = updated
        form.validate_structure()
        form.updated_at = updated.updated_at

        saved = self.forms.save(form)
        logger.info("Field %s of form %s updated: %s", field_id, form_id, sorted(changes))
        self._emit(EventType.FIELD_UPDATED, form_id, actor, {
            "field_id": field_id,
            "changes": _to_wire(dict(changes)),
        })
        return saved.get_field(field_id)

    def remove_field(self, actor: Actor, form_id: int, field_id: int) -> None:
        """Delete a field from a form.

        Raises:
            Forbidden: If the actor cannot author forms
            NotFound: If the form or field does not exist
        """
        require_capability(actor, Capability.AUTHOR_FORMS)
        form = self.forms.get_form_by_id(form_id)
        removed = form.remove_field(field_id)
        form.updated_at = self._clock()
        self.forms.save(form)
        logger.info("Field %s '%s' removed from form %s", field_id, removed.field_name, form_id)
        self._emit(EventType.FIELD_REMOVED, form_id, actor, {
            "field_id": field_id,
            "field_name": removed.field_name,
        })

    # Reading

    def get_available_forms(self, actor: Actor) -> List[FormDefinition]:
        """Forms any actor may submit against."""
        return [f for f in self.forms.get_active_forms() if f.is_submittable()]

    def get_form(self, actor: Actor, form_id: int) -> FormDefinition:
        """Fetch a form with its fields.

        Authoring actors see every form; everyone else only sees submittable ones.

        Raises:
            NotFound: If the form does not exist or is hidden from the actor
        """
        form = self.forms.get_form_by_id(form_id)
        if not form.is_submittable() and not has_capability(actor.role, Capability.AUTHOR_FORMS):
            raise NotFound(f"Form with id {form_id} not found")
        return form

    # Submitting

    def submit_form(self, actor: Actor, form_id: int, data: Dict[str, Any]) -> Subscription:
        """Validate a payload against a form and store it as a pending subscription.

        Raises:
            Forbidden: If the actor cannot submit
            NotFound: If the form does not exist
            FormNotSubmittable: If the form is inactive
            RequiredFieldMissing: See SchemaValidator.validate
            InvalidFieldValue: See SchemaValidator.validate
            InvalidOptionValue: See SchemaValidator.validate
        """
        require_capability(actor, Capability.SUBMIT)
        form = self.forms.get_form_by_id(form_id)
        if not form.is_submittable():
            raise FormNotSubmittable(f"Form {form_id} is not active", received=form_id)

        try:
            validated = self.validator.validate(form, data)
        except FieldValidationError as e:
            logger.warning(
                "Submission by user %s to form %s rejected: %s",
                actor.user_id, form_id, e.message,
            )
            self._emit(EventType.VALIDATION_FAILED, form_id, actor, e.to_dict())
            raise

        subscription = self.subscriptions.create(
            self.lifecycle.create(form_id, validated, actor)
        )
        logger.info(
            "Subscription %s created for form %s by user %s",
            subscription.id, form_id, actor.user_id,
        )
        self._emit(EventType.SUBSCRIPTION_CREATED, subscription.id, actor, {"form_id": form_id})
        return subscription

    # Reviewing

    def list_subscriptions(
        self,
        actor: Actor,
        form_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[Union[SubscriptionStatus, str]] = None,
    ) -> List[Subscription]:
        """All subscriptions matching the given filters (reviewers only)."""
        require_capability(actor, Capability.REVIEW_SUBSCRIPTIONS)
        return self.subscriptions.list_by(form_id=form_id, user_id=user_id, status=status)

    def get_subscription(self, actor: Actor, subscription_id: int) -> Subscription:
        """Any subscription by ID (reviewers only)."""
        require_capability(actor, Capability.REVIEW_SUBSCRIPTIONS)
        return self.subscriptions.get_by_id(subscription_id)

    def update_subscription_status(
        self,
        actor: Actor,
        subscription_id: int,
        status: Union[SubscriptionStatus, str],
    ) -> Subscription:
        """Move a subscription to a new status.

        Raises:
            Forbidden: If the actor is not a manager or admin
            NotFound: If the subscription does not exist
        """
        require_capability(actor, Capability.REVIEW_SUBSCRIPTIONS)
        current = self.subscriptions.get_by_id(subscription_id)
        updated = self.lifecycle.set_status(current, status, actor)
        stored = self.subscriptions.update_status(
            subscription_id, updated.status, updated.updated_at
        )
        self.emitter.emit(transition_event(current, stored, actor))
        return stored

    # Own submissions

    def get_user_subscriptions(self, actor: Actor) -> List[Subscription]:
        """Subscriptions submitted by the calling actor."""
        return self.subscriptions.list_by(user_id=actor.user_id)

    def get_user_subscription(self, actor: Actor, subscription_id: int) -> Subscription:
        """One of the calling actor's own subscriptions.

        Raises:
            NotFound: If it does not exist or belongs to someone else
        """
        subscription = self.subscriptions.get_by_id(subscription_id)
        if subscription.user_id != actor.user_id:
            raise NotFound(f"Subscription with id {subscription_id} not found")
        return subscription


__all__ = [
    "FormRuntime",
]
