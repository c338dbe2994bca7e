"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /login            -- password login; returns access + refresh tokens
  POST /token/refresh    -- exchange a refresh token for a new access token
  POST /logout           -- revoke a refresh token (always 200)
  POST /register         -- create an unverified user; mails a verification link
  GET  /verify/{token}   -- consume an email verification token
  POST /verify/resend    -- mail a fresh verification link
  POST /recover          -- mail a password reset link
  POST /reset/{token}    -- consume a reset token and set a new password
  GET  /me               -- current user (requires Bearer access token)

Handlers are thin: parse the body (Pydantic), call AuthService, shape the
response. AuthService raises ServiceError subclasses which api/main.py turns
into the error envelope, so no handler maps status codes itself.

Handlers are plain `def` -- the store is synchronous, so FastAPI runs them in
its thread pool and concurrent requests do not block each other.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetRequest,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthService

router = APIRouter()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with username and password.

    Wrong username and wrong password return the same generic 401.
    """
    result = service.login(body.username, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/token/refresh", response_model=RefreshResponse)
def refresh_token(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> RefreshResponse:
    """Issue a new access token. The refresh token itself stays the same."""
    result = service.refresh(body.refresh_token)
    return RefreshResponse(access_token=result.access_token, expires_in=result.expires_in)


@router.post("/logout", response_model=MessageResponse)
def logout(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Revoke the refresh token. Succeeds even if the token was already gone."""
    service.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the user identified by the Bearer access token."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Create a user with email_verified=false and mail the verification link."""
    user = service.register(body.username, body.email, body.password)
    return UserResponse.from_user(user)


@router.post("/verify/resend", response_model=MessageResponse)
def resend_verification(body: EmailRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.resend_verification(body.email)
    return MessageResponse(message="Verification email sent")


@router.get("/verify/{token}", response_model=MessageResponse)
def verify_email(token: str, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.verify_email(token)
    return MessageResponse(message="Email successfully verified")


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@router.post("/recover", response_model=MessageResponse)
def recover_password(body: EmailRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.recover_password(body.email)
    return MessageResponse(message="Password recovery email sent successfully")


@router.post("/reset/{token}", response_model=MessageResponse)
def reset_password(
    token: str,
    body: ResetRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.reset_password(token, body.password)
    return MessageResponse(message="Password successfully reset")
