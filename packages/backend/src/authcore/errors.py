"""Error taxonomy for the auth core.

Learn: Every failure carries two things:
- `message`: what the caller is allowed to see
- `cause`: why it really failed (for logs and tests only)

Login and refresh failures deliberately share one public message per
operation so a caller can't tell a wrong password from an unknown email,
or an expired refresh token from a replayed one. The HTTP layer maps
error kinds to status codes through STATUS_CODES and nothing else.
"""

from enum import Enum
from typing import Optional


class Cause(str, Enum):
    """Internal failure causes. Never sent to the caller."""

    # Login
    UNKNOWN_EMAIL = "unknown_email"
    BAD_PASSWORD = "bad_password"

    # Token / refresh
    MALFORMED = "malformed"
    EXPIRED = "expired"
    WRONG_TYPE = "wrong_type"
    PRINCIPAL_MISSING = "principal_missing"
    NO_SESSION = "no_session"
    MISMATCHED = "mismatched"
    SESSION_EXPIRED = "session_expired"
    MISSING_TOKEN = "missing_token"

    # Other
    DUPLICATE_EMAIL = "duplicate_email"
    ROTATION_RACE = "rotation_race"
    INSUFFICIENT_ROLE = "insufficient_role"
    STORE_FAILURE = "store_failure"


class AuthError(Exception):
    """Base class for every error the auth core raises."""

    default_message = "Authentication error"

    def __init__(self, message: Optional[str] = None, cause: Optional[Cause] = None):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input. Normally rejected by request validation first."""

    default_message = "Invalid input"


class UnauthorizedError(AuthError):
    """Bad credentials, or a missing/invalid/expired token."""

    default_message = "Unauthorized"


class ForbiddenError(AuthError):
    """Authenticated, but lacking a required role."""

    default_message = "Insufficient role"


class ConflictError(AuthError):
    """Duplicate registration, or a lost refresh-rotation race."""

    default_message = "Conflict"


class UnavailableError(AuthError):
    """The credential store (or signer) failed."""

    default_message = "Service temporarily unavailable"


# The only place error kinds become HTTP status codes.
STATUS_CODES: dict[type[AuthError], int] = {
    ValidationError: 422,
    UnauthorizedError: 401,
    ForbiddenError: 403,
    ConflictError: 409,
    UnavailableError: 503,
}


def status_code_for(exc: AuthError) -> int:
    """Resolve the HTTP status for an error, walking up its class hierarchy."""
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500
