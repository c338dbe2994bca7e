"""
API request and response models for AuthKeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Passwords are capped at 72 characters: bcrypt ignores anything past 72 bytes,
so longer input is rejected here as a 400 rather than silently truncated.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User

_PASSWORD = Field(min_length=1, max_length=72)
_TOKEN = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = _PASSWORD


class RefreshRequest(BaseModel):
    """Request body for POST /token/refresh and POST /logout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: str = _TOKEN


class RegisterRequest(BaseModel):
    """Request body for POST /register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = _PASSWORD


class EmailRequest(BaseModel):
    """Request body for POST /recover and POST /verify/resend."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ResetRequest(BaseModel):
    """Request body for POST /reset/{token}."""

    password: str = _PASSWORD


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Successful login: a short-lived access token plus a long-lived refresh token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserResponse(BaseModel):
    """A user record with the password hash stripped."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    email_verified: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id or "",
            username=user.username,
            email=user.email,
            email_verified=user.email_verified,
            created_at=user.created_at or "",
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
