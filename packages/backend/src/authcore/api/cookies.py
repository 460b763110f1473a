"""Cookie transport for auth results.

Learn: Routes return an AuthResult; this module turns it into cookies
plus a JSON body. It runs explicitly at the end of each auth route, not
as middleware, so it's obvious which responses touch cookies.

- access token  → cookie "token",        HttpOnly, SameSite=Lax, 15 min
- refresh token → cookie "refreshToken", HttpOnly, SameSite=Lax, 7 days
- Secure flag on everywhere except local development
- None clears the cookie, UNSET leaves it alone
- The refresh token is dropped from the body once it's in its cookie
"""

from dataclasses import dataclass

from fastapi import Response

from authcore.config import settings
from authcore.services.session_authority import UNSET, AuthResult

ACCESS_TOKEN_COOKIE = "token"
REFRESH_TOKEN_COOKIE = "refreshToken"


@dataclass(frozen=True)
class CookiePolicy:
    httponly: bool = True
    samesite: str = "lax"
    path: str = "/"
    secure: bool = False


def cookie_policy() -> CookiePolicy:
    return CookiePolicy(secure=settings.cookie_secure)


def _place(response: Response, name: str, value, max_age: int, policy: CookiePolicy):
    if value is UNSET:
        return
    if value is None:
        response.delete_cookie(
            name,
            path=policy.path,
            secure=policy.secure,
            httponly=policy.httponly,
            samesite=policy.samesite,
        )
    else:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path=policy.path,
            secure=policy.secure,
            httponly=policy.httponly,
            samesite=policy.samesite,
        )


def apply_auth_cookies(response: Response, result: AuthResult) -> dict:
    """Route tokens from an AuthResult into cookies; return the JSON body."""
    policy = cookie_policy()
    _place(
        response,
        ACCESS_TOKEN_COOKIE,
        result.token,
        settings.access_token_expire_minutes * 60,
        policy,
    )
    _place(
        response,
        REFRESH_TOKEN_COOKIE,
        result.refresh_token,
        settings.refresh_token_expire_days * 24 * 60 * 60,
        policy,
    )

    body: dict = {}
    if result.user is not None:
        body["user"] = result.user.model_dump(mode="json")
    if result.message is not None:
        body["success"] = result.success
        body["message"] = result.message
    if result.token is not UNSET:
        body["token"] = result.token
    # refresh_token deliberately never lands in the body
    return body
