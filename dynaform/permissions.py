"""Role capabilities.

Roles form a closed enumeration; every authorization decision in the package
goes through ``has_capability`` / ``require_capability`` instead of comparing
role strings at call sites.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Union

from dynaform.errors import Forbidden
from dynaform.types import Actor, Role

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Operations gated by role."""
    SUBMIT = "submit"
    AUTHOR_FORMS = "author_forms"
    REVIEW_SUBSCRIPTIONS = "review_subscriptions"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.USER: frozenset({Capability.SUBMIT}),
    Role.MANAGER: frozenset({
        Capability.SUBMIT,
        Capability.AUTHOR_FORMS,
        Capability.REVIEW_SUBSCRIPTIONS,
    }),
    Role.ADMIN: frozenset({
        Capability.SUBMIT,
        Capability.AUTHOR_FORMS,
        Capability.REVIEW_SUBSCRIPTIONS,
    }),
}


def has_capability(role: Union[Role, str], capability: Capability) -> bool:
    """Check whether a role grants a capability.

    Examples:
        >>> has_capability(Role.MANAGER, Capability.REVIEW_SUBSCRIPTIONS)
        True
        >>> has_capability("user", Capability.REVIEW_SUBSCRIPTIONS)
        False
    """
    return capability in ROLE_CAPABILITIES.get(Role(role), frozenset())


def require_capability(actor: Actor, capability: Capability) -> None:
    """Raise Forbidden unless the actor's role grants the capability."""
    if not has_capability(actor.role, capability):
        logger.warning(
            "Denied %s to user %s with role %s",
            capability.value, actor.user_id, actor.role.value,
        )
        raise Forbidden(
            f"Role '{actor.role.value}' is not allowed to {capability.value.replace('_', ' ')}",
            expected=sorted(
                role.value for role, caps in ROLE_CAPABILITIES.items() if capability in caps
            ),
            received=actor.role.value,
        )


__all__ = [
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "require_capability",
]
