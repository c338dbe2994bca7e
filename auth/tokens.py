"""
auth/tokens.py -- Access token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user ID), iat and exp and
       are never persisted. Validation checks the signature and the expiry in
       one call and returns the user ID only when both pass -- no caller ever
       sees an unverified claim set.

  Expiry is evaluated against the issuer's own clock, not python-jose's and
       not anything the client sent. jose's built-in exp check is disabled so
       the injected clock is the single source of "now" (tests pass a fake
       clock to step past the 15-minute window).

  Secret: the issuer is constructed with the process-wide SECRET_KEY from
       core.config.get_settings(). An empty secret is a construction error,
       so the service cannot start up issuing tokens signed with nothing.

Layer rule: no imports from api/ or core/. The caller hands in the secret.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidSignature, SigningError, TokenExpired

DEFAULT_LIFETIME = timedelta(minutes=15)

_ALGORITHM = "HS256"

# require_exp would switch jose's wall-clock exp check back on; presence and
# type of exp and sub are checked in validate() instead.
_DECODE_OPTIONS = {"verify_exp": False}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessTokenIssuer:
    """Signs and verifies short-lived bearer tokens.

    Usage:
        issuer = AccessTokenIssuer(settings.secret_key)
        token = issuer.issue(user.id)
        user_id = issuer.validate(token)   # raises InvalidSignature / TokenExpired
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = _ALGORITHM,
        lifetime: timedelta = DEFAULT_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("AccessTokenIssuer requires a non-empty secret key")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._lifetime = lifetime
        self._clock = clock

    @property
    def expires_in(self) -> int:
        """Token validity window in seconds (reported to clients)."""
        return int(self._lifetime.total_seconds())

    def issue(self, user_id: str) -> str:
        """Encode a signed JWT for user_id expiring lifetime from now."""
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + self._lifetime).timestamp()),
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        except JWTError as exc:
            raise SigningError("Could not sign access token") from exc

    def validate(self, token: str) -> str:
        """Return the user ID carried by a valid, unexpired token.

        Raises InvalidSignature for a bad signature, a malformed token, or a
        missing/ill-typed claim; TokenExpired once exp <= now.
        """
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise InvalidSignature("Access token failed verification") from exc

        exp = claims.get("exp")
        sub = claims.get("sub")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidSignature("Access token exp claim is not a timestamp")
        if not isinstance(sub, str) or not sub:
            raise InvalidSignature("Access token sub claim is missing")
        if exp <= self._clock().timestamp():
            raise TokenExpired("Access token expired")
        return sub
