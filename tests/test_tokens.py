"""Unit tests for auth/tokens.py -- access token issue and validation.

Covers:
- validate(issue(u)) == u
- a token is rejected as expired once 15 minutes have passed on the issuer's clock
- a token signed with another key, a garbled token, and a token without sub
  are all InvalidSignature
- an empty secret is a construction error
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidSignature, TokenExpired
from auth.tokens import AccessTokenIssuer

TEST_SECRET = "test-secret-key-with-at-least-32-characters"


@pytest.fixture
def issuer(clock):
    return AccessTokenIssuer(TEST_SECRET, clock=clock)


def test_validate_returns_issued_user_id(issuer):
    token = issuer.issue("user-1")
    assert issuer.validate(token) == "user-1"


def test_expires_in_is_fifteen_minutes(issuer):
    assert issuer.expires_in == 900


def test_token_still_valid_just_before_expiry(issuer, clock):
    token = issuer.issue("user-1")
    clock.advance(minutes=14, seconds=59)
    assert issuer.validate(token) == "user-1"


def test_token_expired_after_fifteen_minutes(issuer, clock):
    token = issuer.issue("user-1")
    clock.advance(minutes=15)
    with pytest.raises(TokenExpired):
        issuer.validate(token)


def test_clock_behind_wall_clock_still_validates(issuer, clock):
    # Only the issuer's clock decides expiry, even when it lags real time.
    clock.now = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issuer.issue("user-1")
    assert issuer.validate(token) == "user-1"


def test_expiry_is_reported_as_expired_not_invalid(issuer, clock):
    clock.now = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issuer.issue("user-1")
    clock.advance(minutes=16)
    with pytest.raises(TokenExpired):
        issuer.validate(token)


def test_custom_lifetime(clock):
    issuer = AccessTokenIssuer(TEST_SECRET, lifetime=timedelta(seconds=30), clock=clock)
    token = issuer.issue("user-1")
    clock.advance(seconds=31)
    with pytest.raises(TokenExpired):
        issuer.validate(token)


def test_token_from_another_key_is_invalid(issuer, clock):
    other = AccessTokenIssuer("another-secret-key-that-is-32-chars-long", clock=clock)
    with pytest.raises(InvalidSignature):
        issuer.validate(other.issue("user-1"))


def test_garbled_token_is_invalid(issuer):
    with pytest.raises(InvalidSignature):
        issuer.validate("not.a.jwt")


def test_tampered_payload_is_invalid(issuer):
    header, payload, signature = issuer.issue("user-1").split(".")
    forged = jwt.encode({"sub": "admin", "exp": 4102444800}, "x" * 32, algorithm="HS256").split(".")[1]
    with pytest.raises(InvalidSignature):
        issuer.validate(f"{header}.{forged}.{signature}")


def test_token_without_sub_is_invalid(issuer, clock):
    exp = int((clock() + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"exp": exp}, TEST_SECRET, algorithm="HS256")
    with pytest.raises(InvalidSignature):
        issuer.validate(token)


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        AccessTokenIssuer("")
