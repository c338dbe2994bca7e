"""
auth/refresh.py -- Refresh token ledger.

Refresh tokens are long-lived bearer secrets. They are stored as opaque
random lookup keys rather than signed stateless tokens so the server can
revoke them; access tokens deliberately forgo that for simplicity.

Lifecycle of a row:
  issue()    -> inserted with expires_at = now + lifetime
  validate() -> unknown: InvalidToken; expired: row deleted, TokenExpired
  revoke()   -> deleted; a missing row is not an error
  purge_expired() -> bulk delete of rows past expiry (background task / CLI)

The lookup-then-delete in validate() is not atomic with concurrent revoke()
calls on the same token. Both paths end with the row gone, so the race only
decides which caller deletes it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidToken, StoreUnavailable, TokenExpired
from auth.models import RefreshToken
from auth.randtoken import generate_token
from auth.store import UserStore

logger = logging.getLogger("authkeeper.auth")

DEFAULT_LIFETIME = timedelta(days=7)

# 32 random bytes -> 256 bits, 43 base64url characters.
_TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenLedger:
    """Issues, validates, and revokes refresh tokens backed by UserStore."""

    def __init__(
        self,
        store: UserStore,
        lifetime: timedelta = DEFAULT_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._lifetime = lifetime
        self._clock = clock

    def issue(self, user_id: str) -> str:
        """Create and persist a new refresh token for user_id.

        Raises StoreUnavailable if the row could not be written; the caller
        must not treat the user as logged in.
        """
        token = generate_token(_TOKEN_BYTES, encoding="base64")
        expires_at = self._clock() + self._lifetime
        self._store.insert_refresh_token(RefreshToken(token=token, user_id=user_id, expires_at=expires_at))
        return token

    def validate(self, token: str) -> str:
        """Return the owning user ID, or raise InvalidToken / TokenExpired."""
        record = self._store.get_refresh_token(token)
        if record is None:
            raise InvalidToken("Unknown refresh token")
        if record.expires_at <= self._clock():
            # Lazy cleanup. A failure here must not turn an expiry into a 500.
            try:
                self._store.delete_refresh_token(token)
            except StoreUnavailable:
                logger.warning("Could not delete expired refresh token for user %s", record.user_id)
            raise TokenExpired("Refresh token expired")
        return record.user_id

    def revoke(self, token: str) -> None:
        """Delete the token. Revoking an unknown token is a no-op."""
        self._store.delete_refresh_token(token)

    def revoke_all(self, user_id: str) -> int:
        """Delete every refresh token owned by user_id. Returns the count removed."""
        removed = self._store.delete_refresh_tokens_for_user(user_id)
        if removed:
            logger.info("Revoked %d refresh token(s) for user %s", removed, user_id)
        return removed

    def purge_expired(self) -> int:
        """Delete all refresh tokens past expiry. Returns the count removed."""
        return self._store.purge_expired_refresh_tokens(self._clock())
