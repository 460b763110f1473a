"""Session authority — register, login, check-status, refresh, logout.

Learn: This is the state machine behind every auth route. Per principal:

    Anonymous ──register/login──▶ Authenticated(refresh session stored)
        ▲                              │   ▲
        │                              │   └── refresh (rotate: old token burned)
        └──────────── logout ──────────┘

Rules the code below enforces:
- One live refresh token per principal. Login overwrites it; refresh
  swaps it (compare-and-swap on the old hash); logout with any verified
  refresh token of the principal deletes it.
- Tokens are minted first but only returned after the store write
  succeeded. A failed write raises and the minted tokens are dropped.
- Failures keep a precise internal `cause` (logged), but callers only
  ever see one message per operation.
- Refresh and logout for the same principal are serialized in-process
  by a per-principal lock. Across processes the store's swap_session
  does the same job; losing the swap raises ConflictError.
"""

import asyncio
import hmac
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from authcore.auth.jwt import AccessClaims, TokenError, TokenSigner, get_signer
from authcore.auth.password import hash_password, verify_password
from authcore.auth.roles import DEFAULT_ROLES
from authcore.db.models import Principal, utcnow
from authcore.errors import (
    Cause,
    ConflictError,
    UnauthorizedError,
    ValidationError,
)
from authcore.schemas.auth import PublicUser
from authcore.store.base import CredentialStore, hash_token, normalize_email

logger = structlog.get_logger()

LOGIN_FAILED = "Credentials are not valid"
REFRESH_FAILED = "Refresh token invalid or expired"
ACCESS_FAILED = "Token not valid"
LOGOUT_MESSAGE = "Logout successful"


class _Unset:
    """Marker for "leave this cookie alone" (as opposed to None = clear it)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()
TokenField = Union[str, None, _Unset]


@dataclass
class AuthResult:
    """Outcome of a session operation, before transport shaping.

    token / refresh_token:
        str   → set the cookie to this value
        None  → clear the cookie
        UNSET → don't touch the cookie
    """

    user: Optional[PublicUser] = None
    token: TokenField = UNSET
    refresh_token: TokenField = UNSET
    success: bool = True
    message: Optional[str] = None


class PrincipalLocks:
    """Lazily created asyncio.Lock per principal id.

    Entries are dropped once nobody holds or waits on them, so the
    registry doesn't grow with the user table.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, principal_id: str):
        key = str(principal_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every SessionAuthority in the process.
principal_locks = PrincipalLocks()


def public_user(principal: Principal) -> PublicUser:
    return PublicUser.model_validate(principal)


class SessionAuthority:
    """Orchestrates hashing, signing and the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        signer: Optional[TokenSigner] = None,
        locks: Optional[PrincipalLocks] = None,
    ):
        self.store = store
        self.signer = signer or get_signer()
        self.locks = locks or principal_locks

    # ─── Register / login ─────────────────────────────────

    async def register(self, email: str, password: str, full_name: str) -> AuthResult:
        """Create a principal with the default role and start its session.

        Raises ConflictError if the email is already registered.
        """
        if not email or not password or not full_name:
            raise ValidationError("email, password and full_name are required")

        email = normalize_email(email)
        if await self.store.find_by_email(email):
            logger.info("auth.register_conflict", cause=Cause.DUPLICATE_EMAIL.value)
            raise ConflictError("Email already registered", cause=Cause.DUPLICATE_EMAIL)

        principal = Principal(
            email=email,
            full_name=full_name,
            password_hash=hash_password(password),
            roles=list(DEFAULT_ROLES),
        )
        principal = await self.store.create(principal)
        logger.info("auth.registered", principal_id=str(principal.id))

        # A crash before this write leaves a principal without a session,
        # which is the same as never having logged in.
        return await self._start_session(principal)

    async def login(self, email: str, password: str) -> AuthResult:
        """Check email/password and start a fresh session.

        Unknown email and wrong password raise the same UnauthorizedError;
        only the logged cause differs.
        """
        principal = await self.store.find_by_email(
            email or "", include_password_hash=True
        )
        if principal is None:
            logger.info("auth.login_failed", cause=Cause.UNKNOWN_EMAIL.value)
            raise UnauthorizedError(LOGIN_FAILED, cause=Cause.UNKNOWN_EMAIL)

        if not verify_password(password or "", principal.password_hash):
            logger.info(
                "auth.login_failed",
                cause=Cause.BAD_PASSWORD.value,
                principal_id=str(principal.id),
            )
            raise UnauthorizedError(LOGIN_FAILED, cause=Cause.BAD_PASSWORD)

        logger.info("auth.login", principal_id=str(principal.id))
        return await self._start_session(principal)

    async def _start_session(self, principal: Principal) -> AuthResult:
        now = utcnow()
        access, refresh = self._mint_pair(principal, now)
        await self.store.put_session(
            principal.id, hash_token(refresh), now + self.signer.refresh_ttl
        )
        return AuthResult(user=public_user(principal), token=access, refresh_token=refresh)

    def _mint_pair(self, principal: Principal, now) -> tuple[str, str]:
        claims = AccessClaims.build(principal.id, principal.roles)
        access = self.signer.issue_access(claims, now=now)
        refresh = self.signer.issue_refresh(str(principal.id), now=now)
        return access, refresh

    # ─── Access tokens ────────────────────────────────────

    async def authenticate(self, access_token: str) -> Principal:
        """Resolve an access token to its (still existing) principal."""
        try:
            claims = self.signer.verify_access(access_token or "")
        except TokenError as e:
            raise UnauthorizedError(ACCESS_FAILED, cause=e.cause)

        principal = await self.store.find_by_id(claims.principal_id)
        if principal is None:
            raise UnauthorizedError(ACCESS_FAILED, cause=Cause.PRINCIPAL_MISSING)
        return principal

    async def check_status(self, principal: Principal) -> AuthResult:
        """Re-mint an access token from the principal's current roles.

        The refresh session is left untouched.
        """
        claims = AccessClaims.build(principal.id, principal.roles)
        return AuthResult(user=public_user(principal), token=self.signer.issue_access(claims))

    # ─── Refresh ──────────────────────────────────────────

    async def refresh_session(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new access/refresh pair.

        The presented token must be the one currently stored for its
        principal, and neither the token nor the stored session may be
        expired. Every such failure raises the same UnauthorizedError.
        """
        try:
            principal_id = self.signer.verify_refresh(refresh_token or "")
        except TokenError as e:
            raise self._refresh_rejected(e.cause)

        async with self.locks.hold(principal_id):
            principal = await self.store.find_by_id(principal_id)
            if principal is None:
                raise self._refresh_rejected(Cause.PRINCIPAL_MISSING, principal_id)

            session = await self.store.get_session(principal.id)
            if session is None:
                raise self._refresh_rejected(Cause.NO_SESSION, principal_id)

            presented = hash_token(refresh_token)
            if not hmac.compare_digest(session.token_hash, presented):
                raise self._refresh_rejected(Cause.MISMATCHED, principal_id)

            now = utcnow()
            if session.is_expired(now):
                raise self._refresh_rejected(Cause.SESSION_EXPIRED, principal_id)

            access, refresh = self._mint_pair(principal, now)
            swapped = await self.store.swap_session(
                principal.id,
                expected_hash=presented,
                token_hash=hash_token(refresh),
                expires_at=now + self.signer.refresh_ttl,
            )
            if not swapped:
                logger.warning("auth.refresh_race", principal_id=principal_id)
                raise ConflictError(
                    "Refresh token was rotated concurrently",
                    cause=Cause.ROTATION_RACE,
                )

        logger.info("auth.refreshed", principal_id=principal_id)
        return AuthResult(user=public_user(principal), token=access, refresh_token=refresh)

    def _refresh_rejected(
        self, cause: Cause, principal_id: Optional[str] = None
    ) -> UnauthorizedError:
        logger.info("auth.refresh_rejected", cause=cause.value, principal_id=principal_id)
        return UnauthorizedError(REFRESH_FAILED, cause=cause)

    # ─── Logout ───────────────────────────────────────────

    async def logout(self, refresh_token: Optional[str]) -> AuthResult:
        """Revoke the refresh session the token belongs to.

        Always reports success: an invalid, expired or missing token
        simply revokes nothing. Any verified token clears its principal's
        session, including one that was already rotated out.
        """
        if refresh_token:
            try:
                principal_id = self.signer.verify_refresh(refresh_token)
            except TokenError as e:
                logger.info("auth.logout_ignored", cause=e.cause.value)
            else:
                async with self.locks.hold(principal_id):
                    principal = await self.store.find_by_id(principal_id)
                    cleared = (
                        await self.store.clear_session(principal.id)
                        if principal is not None
                        else False
                    )
                logger.info("auth.logout", principal_id=principal_id, revoked=cleared)

        return AuthResult(
            success=True,
            message=LOGOUT_MESSAGE,
            token=None,
            refresh_token=None,
        )
