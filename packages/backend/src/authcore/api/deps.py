"""FastAPI dependencies — store, session authority, current principal.

Learn: These are used as Depends() in route handlers. The store backend
is picked from settings: "sql" opens a session per request, "memory"
shares one process-wide InMemoryCredentialStore.

Access tokens are read from the Authorization header first, then the
"token" cookie. The refresh token only comes from its cookie.
"""

from typing import AsyncIterator, Optional

from fastapi import Depends, Header, Request

from authcore.api.cookies import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE
from authcore.auth.roles import require_roles
from authcore.config import settings
from authcore.db.models import Principal
from authcore.errors import Cause, UnauthorizedError
from authcore.services.session_authority import SessionAuthority
from authcore.store.base import CredentialStore
from authcore.store.memory import InMemoryCredentialStore

memory_store = InMemoryCredentialStore()


async def get_credential_store() -> AsyncIterator[CredentialStore]:
    """Yield the configured credential store for one request."""
    if settings.store_backend == "memory":
        yield memory_store
        return

    from authcore.db.engine import get_session_factory
    from authcore.store.sql import SqlCredentialStore

    async with get_session_factory()() as session:
        try:
            yield SqlCredentialStore(session)
        finally:
            await session.close()


def get_authority(
    store: CredentialStore = Depends(get_credential_store),
) -> SessionAuthority:
    return SessionAuthority(store)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None


async def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    authority: SessionAuthority = Depends(get_authority),
) -> Principal:
    """Resolve the caller's access token to a principal (401 otherwise)."""
    token = _bearer(authorization) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError("Authentication required", cause=Cause.MISSING_TOKEN)
    return await authority.authenticate(token)


def get_refresh_token(request: Request) -> str:
    """Refresh token from its cookie (401 if absent)."""
    token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError("Refresh token not found", cause=Cause.MISSING_TOKEN)
    return token


def role_protected(*roles: str):
    """Dependency factory: authenticated principal holding one of `roles`.

    With no roles it only requires authentication.

        @router.get("/admin", dependencies=[Depends(role_protected("admin"))])
    """

    async def _guard(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if roles:
            require_roles(principal, roles)
        return principal

    return _guard
