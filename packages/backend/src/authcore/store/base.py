"""Credential store contract.

Learn: The session authority never talks to a database directly. It
talks to a CredentialStore, which has two implementations:
- SqlCredentialStore: SQLAlchemy async, used in production
- InMemoryCredentialStore: dicts, used in tests and local demos

Refresh tokens are never stored raw. The store only sees the SHA-256
hex digest produced by hash_token().
"""

import hashlib
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

from authcore.db.models import Principal, RefreshSession

PrincipalId = Union[str, uuid.UUID]


def hash_token(token: str) -> str:
    """Digest a refresh token for storage and comparison."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def as_uuid(value: PrincipalId) -> Optional[uuid.UUID]:
    """Parse a principal id; None if it isn't a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


class CredentialStore(ABC):
    """Persistence for principals and their single refresh session."""

    # ─── Principals ───────────────────────────────────────

    @abstractmethod
    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Principal]:
        """Look up a principal by (normalized) email.

        The password hash is only loaded when include_password_hash is True.
        """

    @abstractmethod
    async def find_by_id(self, principal_id: PrincipalId) -> Optional[Principal]:
        """Look up a principal by id. Never loads the password hash."""

    @abstractmethod
    async def create(self, principal: Principal) -> Principal:
        """Persist a new principal. Raises ConflictError if the email is taken."""

    @abstractmethod
    async def update(self, principal: Principal) -> Principal:
        """Persist changes to an existing principal (roles, name)."""

    # ─── Refresh session ──────────────────────────────────

    @abstractmethod
    async def get_session(self, principal_id: PrincipalId) -> Optional[RefreshSession]:
        """Current refresh session of a principal, if any."""

    @abstractmethod
    async def put_session(
        self, principal_id: PrincipalId, token_hash: str, expires_at: datetime
    ) -> None:
        """Write the refresh session, overwriting whatever was there."""

    @abstractmethod
    async def swap_session(
        self,
        principal_id: PrincipalId,
        expected_hash: str,
        token_hash: str,
        expires_at: datetime,
    ) -> bool:
        """Replace the session only if it still holds expected_hash.

        Returns False when another writer got there first.
        """

    @abstractmethod
    async def clear_session(
        self, principal_id: PrincipalId, expected_hash: Optional[str] = None
    ) -> bool:
        """Delete the session (only if it holds expected_hash, when given).

        Returns True if a row was removed.
        """
