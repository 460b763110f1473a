"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys, generic `Uuid`/`JSON` types so the same models run
  on PostgreSQL in production and SQLite in tests
- `password_hash` is a deferred column: plain reads never load it, the
  login path asks for it explicitly
- The live refresh token is its own row (RefreshSession), at most one
  per principal, holding a hash of the token and its expiry
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from authcore.auth.roles import DEFAULT_ROLES


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Make a datetime timezone-aware UTC (SQLite hands back naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Principal(Base):
    """An identity that can log in.

    Learn: Roles live on the row as a JSON list. They're copied into each
    access token at mint time, so a role change shows up in tokens after
    the next login, refresh or check-status.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(
        String(255), nullable=False, deferred=True
    )
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    roles: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=lambda: list(DEFAULT_ROLES)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"Principal(id={self.id}, email={self.email!r}, roles={self.roles})"


class RefreshSession(Base):
    """The single live refresh credential of a principal.

    Learn: Keyed by principal_id, so "one live refresh token per user" is
    enforced by the primary key. Rotation is a conditional UPDATE on the
    old token_hash (compare-and-swap); logout is a DELETE.
    """

    __tablename__ = "refresh_sessions"

    principal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    rotated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)
