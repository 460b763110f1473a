"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.
The engine is created lazily so the in-memory backend (and the test suite)
never needs a database driver.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authcore.config import settings
from authcore.db.models import Base


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Process-wide engine. Pool sizing only applies to server databases."""
    kwargs = {"echo": settings.debug}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=15)
    return create_async_engine(settings.database_url, **kwargs)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory — each request gets its own session."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables (dev/test convenience; production uses Alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
