"""SQLAlchemy-backed credential store.

Learn: Every write commits before returning. The session authority only
hands a freshly minted token to the caller after the store call returns,
so "returned to caller" always implies "persisted".

Rotation uses a conditional UPDATE:

    UPDATE refresh_sessions SET token_hash = :new ...
    WHERE principal_id = :pid AND token_hash = :expected

rowcount == 1 means we won; 0 means someone else rotated (or logged out)
first. That closes the refresh race across processes, not just within
one event loop.

Session writes are Core statements, not ORM unit-of-work, so reads go
through populate_existing to see them.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from authcore.db.models import Principal, RefreshSession, utcnow
from authcore.errors import Cause, ConflictError, UnavailableError
from authcore.store.base import (
    CredentialStore,
    PrincipalId,
    as_uuid,
    normalize_email,
)

logger = structlog.get_logger()


class SqlCredentialStore(CredentialStore):
    """Credential store over an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fail(self, op: str, exc: SQLAlchemyError):
        await self.db.rollback()
        logger.error("store.error", op=op, error=str(exc))
        raise UnavailableError(cause=Cause.STORE_FAILURE) from exc

    # ─── Principals ───────────────────────────────────────

    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Principal]:
        q = select(Principal).where(Principal.email == normalize_email(email))
        if include_password_hash:
            q = q.options(undefer(Principal.password_hash)).execution_options(
                populate_existing=True
            )
        try:
            result = await self.db.execute(q)
        except SQLAlchemyError as e:
            await self._fail("find_by_email", e)
        return result.scalars().first()

    async def find_by_id(self, principal_id: PrincipalId) -> Optional[Principal]:
        pid = as_uuid(principal_id)
        if pid is None:
            return None
        try:
            return await self.db.get(Principal, pid)
        except SQLAlchemyError as e:
            await self._fail("find_by_id", e)

    async def create(self, principal: Principal) -> Principal:
        principal.email = normalize_email(principal.email)
        self.db.add(principal)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                "Email already registered", cause=Cause.DUPLICATE_EMAIL
            ) from e
        except SQLAlchemyError as e:
            await self._fail("create", e)
        return principal

    async def update(self, principal: Principal) -> Principal:
        principal.email = normalize_email(principal.email)
        merged = await self.db.merge(principal)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                "Email already registered", cause=Cause.DUPLICATE_EMAIL
            ) from e
        except SQLAlchemyError as e:
            await self._fail("update", e)
        return merged

    # ─── Refresh session ──────────────────────────────────

    async def get_session(self, principal_id: PrincipalId) -> Optional[RefreshSession]:
        pid = as_uuid(principal_id)
        if pid is None:
            return None
        q = (
            select(RefreshSession)
            .where(RefreshSession.principal_id == pid)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(q)
        except SQLAlchemyError as e:
            await self._fail("get_session", e)
        return result.scalars().first()

    async def put_session(
        self, principal_id: PrincipalId, token_hash: str, expires_at: datetime
    ) -> None:
        pid = as_uuid(principal_id)
        overwrite = (
            update(RefreshSession)
            .where(RefreshSession.principal_id == pid)
            .values(token_hash=token_hash, expires_at=expires_at, rotated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(overwrite)
            if result.rowcount == 0:
                await self.db.execute(
                    insert(RefreshSession).values(
                        principal_id=pid,
                        token_hash=token_hash,
                        expires_at=expires_at,
                        created_at=utcnow(),
                    )
                )
            await self.db.commit()
        except IntegrityError as e:
            # Two first-time writers for the same principal
            await self.db.rollback()
            raise ConflictError(cause=Cause.ROTATION_RACE) from e
        except SQLAlchemyError as e:
            await self._fail("put_session", e)

    async def swap_session(
        self,
        principal_id: PrincipalId,
        expected_hash: str,
        token_hash: str,
        expires_at: datetime,
    ) -> bool:
        stmt = (
            update(RefreshSession)
            .where(
                RefreshSession.principal_id == as_uuid(principal_id),
                RefreshSession.token_hash == expected_hash,
            )
            .values(token_hash=token_hash, expires_at=expires_at, rotated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._fail("swap_session", e)
        return result.rowcount == 1

    async def clear_session(
        self, principal_id: PrincipalId, expected_hash: Optional[str] = None
    ) -> bool:
        pid = as_uuid(principal_id)
        if pid is None:
            return False
        stmt = delete(RefreshSession).where(RefreshSession.principal_id == pid)
        if expected_hash is not None:
            stmt = stmt.where(RefreshSession.token_hash == expected_hash)
        stmt = stmt.execution_options(synchronize_session=False)
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._fail("clear_session", e)
        return result.rowcount == 1
