"""In-memory credential store.

Learn: Same contract as the SQL store, backed by dicts. Every method
finishes without awaiting anything, so each one is atomic with respect
to other coroutines on the loop — that's what makes swap_session a real
compare-and-swap here.

Objects handed out are copies, so callers can't mutate stored state
behind the store's back, and the password hash only leaves the store
when explicitly requested.
"""

import uuid
from datetime import datetime
from typing import Optional

from authcore.db.models import Principal, RefreshSession, utcnow
from authcore.errors import Cause, ConflictError
from authcore.store.base import (
    CredentialStore,
    PrincipalId,
    as_uuid,
    normalize_email,
)


def _copy_principal(p: Principal, include_password_hash: bool) -> Principal:
    return Principal(
        id=p.id,
        email=p.email,
        full_name=p.full_name,
        roles=list(p.roles),
        created_at=p.created_at,
        password_hash=p.password_hash if include_password_hash else None,
    )


def _copy_session(s: RefreshSession) -> RefreshSession:
    return RefreshSession(
        principal_id=s.principal_id,
        token_hash=s.token_hash,
        expires_at=s.expires_at,
        created_at=s.created_at,
        rotated_at=s.rotated_at,
    )


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed store for tests and local runs."""

    def __init__(self):
        self._principals: dict[uuid.UUID, Principal] = {}
        self._by_email: dict[str, uuid.UUID] = {}
        self._sessions: dict[uuid.UUID, RefreshSession] = {}

    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Principal]:
        pid = self._by_email.get(normalize_email(email))
        if pid is None:
            return None
        return _copy_principal(self._principals[pid], include_password_hash)

    async def find_by_id(self, principal_id: PrincipalId) -> Optional[Principal]:
        pid = as_uuid(principal_id)
        stored = self._principals.get(pid) if pid else None
        return _copy_principal(stored, False) if stored else None

    async def create(self, principal: Principal) -> Principal:
        email = normalize_email(principal.email)
        if email in self._by_email:
            raise ConflictError("Email already registered", cause=Cause.DUPLICATE_EMAIL)

        principal.email = email
        if principal.id is None:
            principal.id = uuid.uuid4()
        if principal.created_at is None:
            principal.created_at = utcnow()
        self._principals[principal.id] = _copy_principal(principal, True)
        self._by_email[email] = principal.id
        return principal

    async def update(self, principal: Principal) -> Principal:
        stored = self._principals.get(principal.id)
        if stored is None:
            raise KeyError(f"Principal {principal.id} not found")

        email = normalize_email(principal.email)
        owner = self._by_email.get(email)
        if owner is not None and owner != principal.id:
            raise ConflictError("Email already registered", cause=Cause.DUPLICATE_EMAIL)

        del self._by_email[stored.email]
        stored.email = email
        stored.full_name = principal.full_name
        stored.roles = list(principal.roles)
        if principal.password_hash:
            stored.password_hash = principal.password_hash
        self._by_email[email] = stored.id
        return principal

    async def get_session(self, principal_id: PrincipalId) -> Optional[RefreshSession]:
        session = self._sessions.get(as_uuid(principal_id))
        return _copy_session(session) if session else None

    async def put_session(
        self, principal_id: PrincipalId, token_hash: str, expires_at: datetime
    ) -> None:
        pid = as_uuid(principal_id)
        existing = self._sessions.get(pid)
        self._sessions[pid] = RefreshSession(
            principal_id=pid,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=existing.created_at if existing else utcnow(),
            rotated_at=utcnow() if existing else None,
        )

    async def swap_session(
        self,
        principal_id: PrincipalId,
        expected_hash: str,
        token_hash: str,
        expires_at: datetime,
    ) -> bool:
        session = self._sessions.get(as_uuid(principal_id))
        if session is None or session.token_hash != expected_hash:
            return False
        session.token_hash = token_hash
        session.expires_at = expires_at
        session.rotated_at = utcnow()
        return True

    async def clear_session(
        self, principal_id: PrincipalId, expected_hash: Optional[str] = None
    ) -> bool:
        pid = as_uuid(principal_id)
        session = self._sessions.get(pid)
        if session is None:
            return False
        if expected_hash is not None and session.token_hash != expected_hash:
            return False
        del self._sessions[pid]
        return True
