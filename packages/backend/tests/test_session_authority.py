"""Session authority tests — register, login, status, refresh, logout.

Learn: These run against the in-memory store, without HTTP. They cover
the lifecycle rules directly:
1. Registration + duplicate prevention
2. Login (and enumeration resistance)
3. Refresh rotation, single use, persisted expiry
4. Logout idempotence
5. Concurrent refresh races
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from authcore.auth.jwt import AccessClaims
from authcore.auth.password import verify_password
from authcore.db.models import utcnow
from authcore.errors import (
    Cause,
    ConflictError,
    UnauthorizedError,
    UnavailableError,
    ValidationError,
)
from authcore.services.session_authority import (
    LOGIN_FAILED,
    REFRESH_FAILED,
    UNSET,
    PrincipalLocks,
    SessionAuthority,
)
from authcore.store.base import hash_token
from authcore.store.memory import InMemoryCredentialStore


async def _register(authority, email="alice@example.com", password="pw123", name="Alice"):
    return await authority.register(email, password, name)


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_persists_hashed_principal(authority, store):
    result = await _register(authority)

    assert result.user.email == "alice@example.com"
    assert result.user.full_name == "Alice"
    assert result.user.roles == ["user"]
    assert isinstance(result.token, str)
    assert isinstance(result.refresh_token, str)

    stored = await store.find_by_email("alice@example.com", include_password_hash=True)
    assert stored.password_hash
    assert stored.password_hash != "pw123"
    assert verify_password("pw123", stored.password_hash)


@pytest.mark.asyncio
async def test_register_stores_refresh_session(authority, store):
    result = await _register(authority)

    session = await store.get_session(result.user.id)
    assert session is not None
    assert session.token_hash == hash_token(result.refresh_token)
    assert session.token_hash != result.refresh_token  # never stored raw
    assert session.expires_at > utcnow() + timedelta(days=6)


@pytest.mark.asyncio
async def test_register_refresh_token_is_usable(authority):
    result = await _register(authority)
    refreshed = await authority.refresh_session(result.refresh_token)
    assert refreshed.user.id == result.user.id


@pytest.mark.asyncio
async def test_register_duplicate_email(authority):
    await _register(authority)
    with pytest.raises(ConflictError) as exc:
        await _register(authority, email="Alice@Example.com ")
    assert exc.value.cause == Cause.DUPLICATE_EMAIL


@pytest.mark.asyncio
async def test_register_requires_fields(authority):
    with pytest.raises(ValidationError):
        await authority.register("", "pw123", "Alice")


@pytest.mark.asyncio
async def test_public_user_has_no_secrets(authority):
    result = await _register(authority)
    fields = set(result.user.model_dump())
    assert fields == {"id", "email", "full_name", "roles"}


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_claims_match_principal(authority, signer, store):
    registered = await _register(authority)
    principal = await store.find_by_email("alice@example.com")
    principal.roles = ["user", "admin"]
    await store.update(principal)

    result = await authority.login("alice@example.com", "pw123")

    claims = signer.verify_access(result.token)
    assert claims == AccessClaims(principal_id=str(registered.user.id), roles=("user", "admin"))


@pytest.mark.asyncio
async def test_login_is_case_insensitive_on_email(authority):
    await _register(authority)
    result = await authority.login("ALICE@example.com", "pw123")
    assert result.user.email == "alice@example.com"


@pytest.mark.asyncio
async def test_login_failures_look_the_same(authority):
    """Wrong password and unknown email: same kind, same message."""
    await _register(authority)

    with pytest.raises(UnauthorizedError) as wrong_password:
        await authority.login("alice@example.com", "not-it")
    with pytest.raises(UnauthorizedError) as unknown_email:
        await authority.login("nobody@example.com", "pw123")

    assert wrong_password.value.message == unknown_email.value.message == LOGIN_FAILED
    # ...but the internal cause still tells them apart
    assert wrong_password.value.cause == Cause.BAD_PASSWORD
    assert unknown_email.value.cause == Cause.UNKNOWN_EMAIL


@pytest.mark.asyncio
async def test_login_overwrites_previous_refresh_token(authority):
    """One live refresh token per principal: logging in again burns the old one."""
    first = await _register(authority)
    second = await authority.login("alice@example.com", "pw123")

    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(first.refresh_token)
    assert exc.value.cause == Cause.MISMATCHED

    await authority.refresh_session(second.refresh_token)


# ═══════════════════════════════════════════════════════════
# Check status / authenticate
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_check_status_reflects_role_changes(authority, signer, store):
    registered = await _register(authority)
    principal = await store.find_by_id(registered.user.id)
    principal.roles = ["user", "super-user"]
    await store.update(principal)

    result = await authority.check_status(await store.find_by_id(registered.user.id))

    assert signer.verify_access(result.token).roles == ("user", "super-user")
    assert result.refresh_token is UNSET
    # refresh session untouched
    session = await store.get_session(registered.user.id)
    assert session.token_hash == hash_token(registered.refresh_token)


@pytest.mark.asyncio
async def test_authenticate_resolves_principal(authority):
    registered = await _register(authority)
    principal = await authority.authenticate(registered.token)
    assert principal.id == registered.user.id


@pytest.mark.asyncio
async def test_authenticate_rejects_refresh_token(authority):
    registered = await _register(authority)
    with pytest.raises(UnauthorizedError) as exc:
        await authority.authenticate(registered.refresh_token)
    assert exc.value.cause == Cause.WRONG_TYPE


@pytest.mark.asyncio
async def test_authenticate_rejects_unknown_principal(authority, signer):
    token = signer.issue_access(
        AccessClaims.build("00000000-0000-4000-8000-000000000000", ["user"])
    )
    with pytest.raises(UnauthorizedError) as exc:
        await authority.authenticate(token)
    assert exc.value.cause == Cause.PRINCIPAL_MISSING


# ═══════════════════════════════════════════════════════════
# Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_alice_rotation_scenario(authority):
    """R1 → R2; replaying R1 fails; R2 still works."""
    r1 = (await _register(authority)).refresh_token

    r2 = (await authority.refresh_session(r1)).refresh_token
    assert r2 != r1

    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(r1)
    assert exc.value.message == REFRESH_FAILED
    assert exc.value.cause == Cause.MISMATCHED

    r3 = (await authority.refresh_session(r2)).refresh_token
    assert r3 not in (r1, r2)


@pytest.mark.asyncio
async def test_refresh_returns_fresh_access_token(authority, signer):
    registered = await _register(authority)
    result = await authority.refresh_session(registered.refresh_token)
    claims = signer.verify_access(result.token)
    assert claims.principal_id == str(registered.user.id)
    assert claims.roles == ("user",)


@pytest.mark.asyncio
async def test_refresh_rejects_garbage(authority):
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session("garbage")
    assert exc.value.message == REFRESH_FAILED
    assert exc.value.cause == Cause.MALFORMED


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(authority):
    registered = await _register(authority)
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(registered.token)
    assert exc.value.cause == Cause.WRONG_TYPE


@pytest.mark.asyncio
async def test_refresh_rejects_expired_token(authority, signer):
    registered = await _register(authority)
    stale = signer.issue_refresh(
        str(registered.user.id), now=datetime.now(timezone.utc) - timedelta(days=8)
    )
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(stale)
    assert exc.value.cause == Cause.EXPIRED


@pytest.mark.asyncio
async def test_refresh_checks_persisted_expiry(authority, store):
    """The stored expiry wins even if the token itself is still valid."""
    registered = await _register(authority)
    await store.put_session(
        registered.user.id,
        hash_token(registered.refresh_token),
        utcnow() - timedelta(seconds=1),
    )
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(registered.refresh_token)
    assert exc.value.message == REFRESH_FAILED
    assert exc.value.cause == Cause.SESSION_EXPIRED


@pytest.mark.asyncio
async def test_refresh_without_session_row(authority, store):
    """A principal whose session write never happened behaves as logged out."""
    registered = await _register(authority)
    await store.clear_session(registered.user.id)
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(registered.refresh_token)
    assert exc.value.cause == Cause.NO_SESSION


@pytest.mark.asyncio
async def test_refresh_for_missing_principal(authority, signer):
    token = signer.issue_refresh("00000000-0000-4000-8000-000000000000")
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(token)
    assert exc.value.cause == Cause.PRINCIPAL_MISSING


# ═══════════════════════════════════════════════════════════
# Logout
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_logout_then_refresh_fails(authority, store):
    registered = await _register(authority)

    result = await authority.logout(registered.refresh_token)
    assert result.success is True
    assert result.token is None
    assert result.refresh_token is None
    assert await store.get_session(registered.user.id) is None

    with pytest.raises(UnauthorizedError):
        await authority.refresh_session(registered.refresh_token)


@pytest.mark.asyncio
async def test_logout_is_idempotent(authority):
    registered = await _register(authority)
    first = await authority.logout(registered.refresh_token)
    second = await authority.logout(registered.refresh_token)
    assert first.success and second.success
    assert first.message == second.message


@pytest.mark.asyncio
async def test_logout_with_invalid_tokens_succeeds(authority, signer):
    assert (await authority.logout("garbage")).success
    assert (await authority.logout(None)).success
    assert (await authority.logout("")).success
    stale = signer.issue_refresh(
        "00000000-0000-4000-8000-000000000000",
        now=datetime.now(timezone.utc) - timedelta(days=8),
    )
    assert (await authority.logout(stale)).success


@pytest.mark.asyncio
async def test_logout_with_rotated_token_ends_live_session(authority, store):
    """R1 stolen and rotated to R2 by someone else: logging out with R1
    still kills R2."""
    r1 = (await _register(authority)).refresh_token
    rotated = await authority.refresh_session(r1)

    assert (await authority.logout(r1)).success
    assert await store.get_session(rotated.user.id) is None
    with pytest.raises(UnauthorizedError) as exc:
        await authority.refresh_session(rotated.refresh_token)
    assert exc.value.cause == Cause.NO_SESSION


# ═══════════════════════════════════════════════════════════
# Store failures
# ═══════════════════════════════════════════════════════════


class _BrokenSessionStore(InMemoryCredentialStore):
    async def put_session(self, principal_id, token_hash, expires_at):
        raise UnavailableError(cause=Cause.STORE_FAILURE)


@pytest.mark.asyncio
async def test_failed_persist_returns_no_tokens(signer):
    store = _BrokenSessionStore()
    authority = SessionAuthority(store, signer=signer, locks=PrincipalLocks())

    with pytest.raises(UnavailableError):
        await authority.register("carol@example.com", "pw123", "Carol")

    # The principal exists, but without a session — same as never logged in.
    principal = await store.find_by_email("carol@example.com")
    assert principal is not None
    assert await store.get_session(principal.id) is None


# ═══════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrent_refresh_single_winner(authority, store):
    """Two refreshes with one token: exactly one succeeds."""
    registered = await _register(authority)
    token = registered.refresh_token

    results = await asyncio.gather(
        authority.refresh_session(token),
        authority.refresh_session(token),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (UnauthorizedError, ConflictError))

    session = await store.get_session(registered.user.id)
    assert session.token_hash == hash_token(winners[0].refresh_token)


class _InterleavingStore(InMemoryCredentialStore):
    """Yields to the loop after reading the session, so two refreshes
    both see the same old hash before either swaps it."""

    async def get_session(self, principal_id):
        session = await super().get_session(principal_id)
        await asyncio.sleep(0)
        return session


@pytest.mark.asyncio
async def test_lost_swap_raises_conflict(signer):
    """Without a shared lock (think: two processes), the swap decides."""
    store = _InterleavingStore()
    registered = await SessionAuthority(store, signer, PrincipalLocks()).register(
        "dave@example.com", "pw123", "Dave"
    )

    # Separate lock registries — nothing serializes the two calls in-process.
    a = SessionAuthority(store, signer, PrincipalLocks())
    b = SessionAuthority(store, signer, PrincipalLocks())

    results = await asyncio.gather(
        a.refresh_session(registered.refresh_token),
        b.refresh_session(registered.refresh_token),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)
    assert losers[0].cause == Cause.ROTATION_RACE

    session = await store.get_session(registered.user.id)
    assert session.token_hash == hash_token(winners[0].refresh_token)


@pytest.mark.asyncio
async def test_principal_locks_are_released():
    locks = PrincipalLocks()
    async with locks.hold("p-1"):
        assert len(locks) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_principal_locks_serialize_same_key():
    locks = PrincipalLocks()
    order = []

    async def worker(name):
        async with locks.hold("p-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0

