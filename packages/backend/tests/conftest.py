"""Test fixtures — in-memory store by default, SQLite for the SQL store.

Learn: Testing pattern for the auth core + FastAPI:

1. Environment is pinned before authcore is imported: memory backend,
   a fixed JWT secret, and bcrypt rounds=4 so hashing is fast.
2. Each test gets a fresh InMemoryCredentialStore, injected into the app
   by overriding get_credential_store.
3. SQL store tests run against SQLite in memory (aiosqlite + StaticPool,
   so every connection sees the same database).
"""

import os

os.environ["AUTHCORE_STORE_BACKEND"] = "memory"
os.environ["AUTHCORE_ENVIRONMENT"] = "development"
os.environ["AUTHCORE_JWT_SECRET"] = "test-secret-not-for-production-0123456789"
os.environ["AUTHCORE_BCRYPT_ROUNDS"] = "4"

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from authcore.api.deps import get_credential_store  # noqa: E402
from authcore.auth.jwt import TokenSigner  # noqa: E402
from authcore.db.engine import create_tables  # noqa: E402
from authcore.main import app  # noqa: E402
from authcore.services.session_authority import (  # noqa: E402
    PrincipalLocks,
    SessionAuthority,
)
from authcore.store.memory import InMemoryCredentialStore  # noqa: E402
from authcore.store.sql import SqlCredentialStore  # noqa: E402

TEST_SECRET = "unit-test-signing-key-0123456789abcdef"


@pytest.fixture()
def store():
    return InMemoryCredentialStore()


@pytest.fixture()
def signer():
    return TokenSigner(
        TEST_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture()
def authority(store, signer):
    return SessionAuthority(store, signer=signer, locks=PrincipalLocks())


@pytest_asyncio.fixture()
async def sql_store():
    """SqlCredentialStore over a throwaway in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    session = AsyncSession(engine, expire_on_commit=False)
    try:
        yield SqlCredentialStore(session)
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture()
def make_client(store):
    """Factory for HTTP clients bound to the test store.

    Learn: Most tests just use `client`. Tests that need a second,
    independent cookie jar (e.g. replaying an old refresh token) build
    one with make_client(cookies={...}).
    """

    async def override_store():
        yield store

    app.dependency_overrides[get_credential_store] = override_store

    def _make(**kwargs) -> AsyncClient:
        transport = ASGITransport(app=app)
        return AsyncClient(transport=transport, base_url="http://test", **kwargs)

    yield _make

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(make_client):
    """HTTP client with its own cookie jar."""
    async with make_client() as ac:
        yield ac
