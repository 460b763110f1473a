"""JWT token creation and verification.

Learn: JWT (JSON Web Token) gives us self-contained credentials.
- Access token: short-lived (15min), carries the principal id and roles
- Refresh token: long-lived (7 days), carries only the principal id

Both carry a random `jti`, so two tokens minted for the same principal
in the same second are still different strings. That matters for
rotation: the new refresh token must never equal the old one.

Signature and expiry are checked independently by PyJWT; a token must
pass both, and must also have the expected `type`.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Iterable, Optional

import jwt

from authcore.config import settings
from authcore.errors import Cause

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Raised when token verification fails."""

    def __init__(self, message: str, cause: Cause = Cause.MALFORMED):
        self.cause = cause
        super().__init__(message)


class TokenExpiredError(TokenError):
    """Signature is fine but `exp` has passed."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message, cause=Cause.EXPIRED)


class TokenInvalidError(TokenError):
    """Bad signature, malformed token, missing claims or wrong token type."""


@dataclass(frozen=True)
class AccessClaims:
    """What an access token asserts about its bearer."""

    principal_id: str
    roles: tuple[str, ...] = ()

    @classmethod
    def build(cls, principal_id, roles: Iterable[str]) -> "AccessClaims":
        return cls(principal_id=str(principal_id), roles=tuple(roles))


class TokenSigner:
    """Mints and verifies access/refresh tokens with one symmetric key.

    Learn: The secret is handed in once at construction and kept private.
    There is no setter — rotating the key means restarting the process.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        if not secret:
            raise ValueError("Token signer needs a non-empty secret")
        self._secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def __repr__(self) -> str:
        return (
            f"TokenSigner(algorithm={self.algorithm!r}, "
            f"access_ttl={self.access_ttl}, refresh_ttl={self.refresh_ttl})"
        )

    # ─── Issue ────────────────────────────────────────────

    def issue_access(self, claims: AccessClaims, now: Optional[datetime] = None) -> str:
        """Create a JWT access token."""
        extra = {"roles": list(claims.roles)}
        return self._encode(claims.principal_id, ACCESS, self.access_ttl, now, extra)

    def issue_refresh(self, principal_id: str, now: Optional[datetime] = None) -> str:
        """Create a JWT refresh token."""
        return self._encode(str(principal_id), REFRESH, self.refresh_ttl, now)

    def _encode(
        self,
        subject: str,
        token_type: str,
        ttl: timedelta,
        now: Optional[datetime],
        extra: Optional[dict] = None,
    ) -> str:
        issued = now or datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "type": token_type,
            "iat": issued,
            "exp": issued + ttl,
            "jti": uuid.uuid4().hex,
        }
        if extra:
            payload.update(extra)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    # ─── Verify ───────────────────────────────────────────

    def verify_access(self, token: str) -> AccessClaims:
        """Verify an access token and return its claims.

        Raises TokenExpiredError or TokenInvalidError.
        """
        payload = self._decode(token, ACCESS)
        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            raise TokenInvalidError("Invalid token: roles claim must be a list")
        return AccessClaims.build(payload["sub"], roles)

    def verify_refresh(self, token: str) -> str:
        """Verify a refresh token and return the principal id it names."""
        return self._decode(token, REFRESH)["sub"]

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if payload.get("type") != expected_type:
            raise TokenInvalidError(
                f"Not a {expected_type} token", cause=Cause.WRONG_TYPE
            )
        return payload


@lru_cache(maxsize=1)
def get_signer() -> TokenSigner:
    """Process-wide signer built from settings on first use."""
    return TokenSigner(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
    )
