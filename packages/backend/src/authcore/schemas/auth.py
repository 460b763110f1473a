"""Pydantic schemas for the auth API.

Learn: Request bodies are validated here, before anything reaches the
session authority — a malformed email or a 3-character password never
gets past FastAPI (422). PublicUser is the only shape a principal ever
leaves the service in; it has no password or token fields at all.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    email: str = Field(max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=72)
    full_name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=72)


class PublicUser(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    roles: list[str]

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Body of register/login/refresh/check-status.

    The refresh token is never part of the body — it only travels
    in its HttpOnly cookie.
    """

    user: PublicUser
    token: str


class LogoutResponse(BaseModel):
    success: bool
    message: str
    token: Optional[str] = None
