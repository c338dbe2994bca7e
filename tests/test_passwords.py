"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- verify_password(p, hash_password(p)) is True; a different password is False
- every hash carries its own salt
- input past bcrypt's 72-byte limit is refused rather than truncated
- a malformed stored hash raises InvalidHashError, not a False result
"""

import pytest

from auth.errors import InvalidHashError
from auth.passwords import DUMMY_HASH, hash_password, verify_password


def test_hash_then_verify_matches():
    hashed = hash_password("correct horse")
    assert verify_password("correct horse", hashed) is True


def test_verify_rejects_different_password():
    hashed = hash_password("correct horse")
    assert verify_password("correct horsex", hashed) is False


def test_same_password_hashes_differently():
    assert hash_password("pw") != hash_password("pw")


def test_hash_is_bcrypt_format():
    assert hash_password("pw").startswith("$2b$")


def test_hash_refuses_password_over_72_bytes():
    # 40 two-byte characters: under 72 characters, over 72 bytes.
    with pytest.raises(ValueError):
        hash_password("é" * 40)


def test_verify_over_72_bytes_is_false():
    hashed = hash_password("a" * 72)
    assert verify_password("a" * 73, hashed) is False


def test_verify_malformed_hash_raises():
    with pytest.raises(InvalidHashError):
        verify_password("pw", "not-a-bcrypt-hash")


def test_dummy_hash_never_matches_an_ordinary_guess():
    assert verify_password("password", DUMMY_HASH) is False
