"""
auth/single_use.py -- Email-verification and password-reset tokens.

One live token per (purpose, user). issue() replaces any outstanding token
for the same pair, so an older link stops working as soon as a new one is
sent. Purposes are independent: requesting a password reset does not void a
pending email verification.

consume() only checks the token. It does not delete it: the caller deletes
the row in the same transaction as the state change the token authorizes
(UserStore.mark_email_verified / UserStore.reset_password). That way a token
is never burned by a request whose update then fails, and a replay of an
already-used token finds nothing.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidToken, StoreUnavailable, TokenExpired
from auth.models import PURPOSES, SingleUseToken
from auth.randtoken import generate_hex_token
from auth.store import UserStore

logger = logging.getLogger("authkeeper.auth")

DEFAULT_LIFETIME = timedelta(hours=24)

# 32 hex characters -> 128 bits.
_TOKEN_LENGTH = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SingleUseTokenManager:
    """Issues and checks single-use tokens stored per (purpose, user)."""

    def __init__(
        self,
        store: UserStore,
        lifetime: timedelta = DEFAULT_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._lifetime = lifetime
        self._clock = clock

    def issue(self, user_id: str, purpose: str) -> str:
        _check_purpose(purpose)
        token = generate_hex_token(_TOKEN_LENGTH)
        self._store.upsert_single_use_token(
            SingleUseToken(
                token=token,
                user_id=user_id,
                purpose=purpose,
                expires_at=self._clock() + self._lifetime,
            )
        )
        return token

    def consume(self, token: str, purpose: str) -> str:
        """Return the user ID the token belongs to.

        Raises InvalidToken if no live token matches within this purpose and
        TokenExpired (after deleting the row) if it matched but has lapsed.
        """
        _check_purpose(purpose)
        record = self._store.get_single_use_token(purpose, token)
        if record is None:
            raise InvalidToken(f"Unknown {purpose} token")
        if record.expires_at <= self._clock():
            try:
                self._store.delete_single_use_token(purpose, token)
            except StoreUnavailable:
                logger.warning("Could not delete expired %s token for user %s", purpose, record.user_id)
            raise TokenExpired(f"{purpose} token expired")
        return record.user_id

    def purge_expired(self) -> int:
        return self._store.purge_expired_single_use_tokens(self._clock())


def _check_purpose(purpose: str) -> None:
    if purpose not in PURPOSES:
        raise ValueError(f"Unknown token purpose: {purpose!r}")
