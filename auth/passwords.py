"""
auth/passwords.py -- Password hashing and verification.

Security design decisions:
  bcrypt directly (no passlib wrapper). Each hash embeds its own random salt
  from bcrypt.gensalt(), so hashing the same password twice yields different
  strings. The cost factor is fixed at bcrypt's default (12).

  bcrypt only looks at the first 72 bytes of input. Rather than silently
  truncate, hash_password() refuses longer input; the API layer caps the
  field length so clients get a 400 instead of a 500.

  verify_password() returns False on mismatch and raises InvalidHashError
  only when the stored hash itself is malformed -- a corrupted row is an
  operator problem, not a wrong password.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import InvalidHashError

BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password exceeds {BCRYPT_MAX_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Comparison is constant-time inside bcrypt.checkpw. Raises InvalidHashError
    if hashed is not a bcrypt hash.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError as exc:
        raise InvalidHashError("Stored password hash is malformed.") from exc


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones. AuthService
# verifies against it when the username does not exist.
DUMMY_HASH: str = hash_password("authkeeper_timing_dummy")
