"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Single-use token purposes. Each (purpose, user) pair holds at most one live token.
PURPOSE_VERIFY_EMAIL = "verify_email"
PURPOSE_RESET_PASSWORD = "reset_password"
PURPOSES = (PURPOSE_VERIFY_EMAIL, PURPOSE_RESET_PASSWORD)


@dataclass
class User:
    """An identity record.

    id is a random UUID string assigned by the store on insert. email is
    stored lower-cased so uniqueness is case-insensitive. hashed_password is
    a bcrypt hash and never leaves the service layer.
    """

    username: str
    email: str
    hashed_password: str
    id: str | None = None
    email_verified: bool = False
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token row. token is the primary key."""

    token: str
    user_id: str
    expires_at: datetime
    created_at: str | None = None


@dataclass
class SingleUseToken:
    """A verification or password-reset token bound to one (purpose, user) pair."""

    token: str
    user_id: str
    purpose: str
    expires_at: datetime
    created_at: str | None = None
