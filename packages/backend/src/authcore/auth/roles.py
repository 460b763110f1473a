"""Role gate — authorization after authentication.

Learn: Authentication answers "who are you?" (401 when it fails).
Authorization answers "may you do this?" (403 when it fails).
The gate is a pure set intersection: a principal passes if it holds
at least one of the required roles.
"""

from enum import Enum
from typing import Iterable

from authcore.errors import Cause, ForbiddenError


class ValidRoles(str, Enum):
    """Role tags understood by the platform."""

    user = "user"
    admin = "admin"
    super_user = "super-user"


DEFAULT_ROLES: list[str] = [ValidRoles.user.value]


def _tags(roles: Iterable) -> set[str]:
    return {r.value if isinstance(r, ValidRoles) else str(r) for r in roles}


def authorize(roles: Iterable, required: Iterable) -> bool:
    """True iff `roles` and `required` share at least one role."""
    return bool(_tags(roles) & _tags(required))


def require_roles(principal, required: Iterable) -> None:
    """Raise ForbiddenError unless the principal holds one of `required`."""
    required = _tags(required)
    if not authorize(principal.roles or [], required):
        raise ForbiddenError(
            f"User needs a valid role: {sorted(required)}",
            cause=Cause.INSUFFICIENT_ROLE,
        )
