"""Dynaform: dynamic form schema & submission engine.

Dynaform lets privileged users define forms made of typed, ordered fields
and lets other users submit data against them:
- Form definitions with a flat, typed field model and option lists
- Fail-fast payload validation against a form definition
- Subscription status lifecycle with role-gated review
- Audit event stream for authoring and review actions

Basic usage:
    >>> from dynaform import FormRuntime
    >>> from dynaform.types import Actor, Role
    >>> runtime = FormRuntime()
    >>> form = runtime.create_form(Actor(1, Role.ADMIN), name="Feedback", fields=[
    ...     {"field_name": "rating", "field_type": "number", "is_required": True},
    ... ])
    >>> sub = runtime.submit_form(Actor(2, Role.USER), form.id, {"rating": 5})
    >>> print(sub.status.value)
    pending
"""

import logging

__version__ = "0.1.0"

# Version info
VERSION = (0, 1, 0)

# Core exports
from dynaform.errors import DynaformError
from dynaform.forms import FieldOption, FormDefinition, FormField
from dynaform.runtime import FormRuntime
from dynaform.state_machine import Subscription, SubscriptionLifecycle
from dynaform.validation import SchemaValidator

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "DynaformError",
    "FieldOption",
    "FormDefinition",
    "FormField",
    "FormRuntime",
    "SchemaValidator",
    "Subscription",
    "SubscriptionLifecycle",
]
