"""
auth/errors.py -- Error types for the credential and token engine.

Two families live here:

  Component errors are raised by the leaf components (ledger, single-use
  manager, access-token issuer, password manager, store). They describe what
  went wrong with a token or the store, not how a client should see it.

  Service errors are raised by AuthService only. Each carries the HTTP
  status_code and machine-readable error_code that api/main.py renders into
  the error envelope. The orchestrator is the single place that maps one
  family onto the other.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Optional

# ---------------------------------------------------------------------------
# Component errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token validation failures."""


class InvalidToken(TokenError):
    """The token is unknown: never issued, revoked, consumed, or overwritten."""


class TokenExpired(TokenError):
    """The token exists (or verified) but its expiry has passed."""


class InvalidSignature(TokenError):
    """An access token failed signature or claim-shape verification."""


class SigningError(Exception):
    """An access token could not be signed (bad algorithm or key configuration)."""


class StoreUnavailable(Exception):
    """The row store could not complete a read or write (timeout, connection loss)."""


class InvalidHashError(ValueError):
    """A stored password hash is not a well-formed bcrypt hash."""


# ---------------------------------------------------------------------------
# Service errors (boundary taxonomy)
# ---------------------------------------------------------------------------


class ServiceError(Exception):
    """Base class for orchestrator errors mapped to HTTP responses."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class BadRequest(ServiceError):
    """Malformed input (400)."""

    status_code = 400
    error_code = "bad_request"


class Unauthorized(ServiceError):
    """Bad credentials or an invalid/expired token (401). Message stays generic."""

    status_code = 401
    error_code = "unauthorized"


class NotFound(ServiceError):
    """Unknown single-use token or email where disclosure is acceptable (404)."""

    status_code = 404
    error_code = "not_found"


class Conflict(ServiceError):
    """Duplicate username or email (409)."""

    status_code = 409
    error_code = "conflict"


class InternalError(ServiceError):
    """Store, mail, or signing failure (500)."""

    status_code = 500
    error_code = "internal_error"
