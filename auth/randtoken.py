"""
auth/randtoken.py -- Cryptographically secure opaque token generation.

Every token the service hands out as a lookup key (refresh tokens, email
verification and password reset tokens) comes from here. Bytes are drawn
from the OS CSPRNG via secrets.token_bytes; an unavailable entropy source
raises from the OS layer and is deliberately not caught.

Truncation is only applied when the caller asks for it, and is refused if
the result would carry fewer than MIN_ENTROPY_BITS.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import math
import secrets

MIN_ENTROPY_BITS = 128

_BITS_PER_CHAR = {"base64": 6, "hex": 4}


def generate_token(byte_length: int = 32, encoding: str = "base64", length: int | None = None) -> str:
    """Return byte_length random bytes encoded as unpadded base64url or hex.

    Args:
        byte_length: Number of random bytes to draw (32 -> 256 bits).
        encoding:    "base64" (URL-safe alphabet, no padding) or "hex".
        length:      Optional character count to truncate to.
    """
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    if encoding not in _BITS_PER_CHAR:
        raise ValueError(f"Unknown token encoding: {encoding!r}")

    raw = secrets.token_bytes(byte_length)
    if encoding == "hex":
        token = raw.hex()
    else:
        token = base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    if length is None:
        return token
    if length > len(token):
        raise ValueError(f"Requested length {length} exceeds encoded length {len(token)}")
    if length * _BITS_PER_CHAR[encoding] < MIN_ENTROPY_BITS:
        raise ValueError(f"Truncated token would carry fewer than {MIN_ENTROPY_BITS} bits of entropy")
    return token[:length]


def generate_hex_token(length: int) -> str:
    """Return a hex token of exactly length characters."""
    return generate_token(math.ceil(length / 2), encoding="hex", length=length)


def generate_base64_token(length: int) -> str:
    """Return a base64url token of exactly length characters."""
    return generate_token(math.ceil(length * 3 / 4), encoding="base64", length=length)
