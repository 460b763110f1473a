"""Auth API — registration, login, status, refresh, logout.

Learn: Routes for the session lifecycle:
- POST /auth/register     → create account, start a session
- POST /auth/login        → email/password → access + refresh cookies
- GET  /auth/check-status → fresh access token for the current roles
- POST /auth/refresh      → refresh cookie → rotated pair
- POST /auth/logout       → revoke the refresh session, clear cookies
- GET  /auth/private      → any authenticated principal
- GET  /auth/private2     → admin or super-user only

Routes only shape HTTP. Every decision lives in SessionAuthority, and
every token leaves through apply_auth_cookies.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from authcore.api.cookies import REFRESH_TOKEN_COOKIE, apply_auth_cookies
from authcore.api.deps import (
    get_authority,
    get_current_principal,
    get_refresh_token,
    role_protected,
)
from authcore.auth.roles import ValidRoles
from authcore.db.models import Principal
from authcore.schemas.auth import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
)
from authcore.services.session_authority import SessionAuthority, public_user

router = APIRouter(prefix="/auth")


# ─── Register / login ───────────────────────────────────


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    authority: SessionAuthority = Depends(get_authority),
):
    """Create a new account and log it in."""
    result = await authority.register(body.email, body.password, body.full_name)
    return apply_auth_cookies(response, result)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    authority: SessionAuthority = Depends(get_authority),
):
    """Login with email and password → cookies + access token."""
    result = await authority.login(body.email, body.password)
    return apply_auth_cookies(response, result)


# ─── Status ─────────────────────────────────────────────


@router.get("/check-status", response_model=AuthResponse)
async def check_status(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_authority),
):
    """Re-mint the access token (picks up role changes)."""
    result = await authority.check_status(principal)
    return apply_auth_cookies(response, result)


# ─── Refresh / logout ───────────────────────────────────


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    response: Response,
    refresh_token: str = Depends(get_refresh_token),
    authority: SessionAuthority = Depends(get_authority),
):
    """Exchange the refresh cookie for a rotated token pair."""
    result = await authority.refresh_session(refresh_token)
    return apply_auth_cookies(response, result)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    authority: SessionAuthority = Depends(get_authority),
):
    """Revoke the session (if any) and clear both cookies. Always 200."""
    refresh_token: Optional[str] = request.cookies.get(REFRESH_TOKEN_COOKIE)
    result = await authority.logout(refresh_token)
    return apply_auth_cookies(response, result)


# ─── Protected samples ──────────────────────────────────


@router.get("/private")
async def private_route(principal: Principal = Depends(role_protected())):
    return {"ok": True, "user": public_user(principal).model_dump(mode="json")}


@router.get("/private2")
async def private_route_admin(
    principal: Principal = Depends(
        role_protected(ValidRoles.admin.value, ValidRoles.super_user.value)
    ),
):
    return {"ok": True, "user": public_user(principal).model_dump(mode="json")}
