"""Unit tests for auth/store.py -- UserStore persistence.

Covers:
- create/get round trip for users (by username, email, id)
- UNIQUE(username) and UNIQUE(email) raise IntegrityError on insert
- token-guarded state changes: mark_email_verified / reset_password only
  succeed while the matching single-use row exists, and consume it
- reset_password is all-or-nothing across hash, reset token and sessions
- driver failures surface as StoreUnavailable
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import StoreUnavailable
from auth.models import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL, RefreshToken, SingleUseToken, User

_LATER = datetime.now(timezone.utc) + timedelta(hours=1)


def _user(username="alice", email="alice@x.com") -> User:
    return User(username=username, email=email, hashed_password="$2b$12$hash")


def _issue(store, purpose, user_id, token):
    store.upsert_single_use_token(SingleUseToken(token=token, user_id=user_id, purpose=purpose, expires_at=_LATER))


def test_create_and_lookup(store):
    uid = store.create_user(_user())
    by_name = store.get_by_username("alice")
    assert by_name is not None
    assert by_name.id == uid
    assert by_name.email_verified is False
    assert by_name.created_at
    assert store.get_by_email("alice@x.com").id == uid
    assert store.get_by_id(uid).username == "alice"


def test_lookups_return_none_when_absent(store):
    assert store.get_by_username("nobody") is None
    assert store.get_by_email("nobody@x.com") is None
    assert store.get_by_id("0000") is None


def test_duplicate_username_raises_integrity_error(store):
    store.create_user(_user())
    with pytest.raises(IntegrityError):
        store.create_user(_user(email="other@x.com"))


def test_duplicate_email_raises_integrity_error(store):
    store.create_user(_user())
    with pytest.raises(IntegrityError):
        store.create_user(_user(username="bob"))


def test_mark_email_verified_consumes_token(store):
    uid = store.create_user(_user())
    _issue(store, PURPOSE_VERIFY_EMAIL, uid, "tok-v")

    assert store.mark_email_verified(uid, "tok-v") is True
    assert store.get_by_id(uid).email_verified is True
    assert store.get_single_use_token(PURPOSE_VERIFY_EMAIL, "tok-v") is None
    assert store.mark_email_verified(uid, "tok-v") is False


def test_mark_email_verified_with_stale_token_changes_nothing(store):
    uid = store.create_user(_user())
    _issue(store, PURPOSE_VERIFY_EMAIL, uid, "old")
    _issue(store, PURPOSE_VERIFY_EMAIL, uid, "new")

    assert store.mark_email_verified(uid, "old") is False
    assert store.get_by_id(uid).email_verified is False


def test_reset_password_consumes_token(store):
    uid = store.create_user(_user())
    _issue(store, PURPOSE_RESET_PASSWORD, uid, "tok-r")

    assert store.reset_password(uid, "tok-r", "$2b$12$reset") is True
    assert store.get_by_id(uid).hashed_password == "$2b$12$reset"
    assert store.reset_password(uid, "tok-r", "$2b$12$again") is False
    assert store.get_by_id(uid).hashed_password == "$2b$12$reset"


def test_reset_token_cannot_verify_email(store):
    uid = store.create_user(_user())
    _issue(store, PURPOSE_RESET_PASSWORD, uid, "tok-r")
    assert store.mark_email_verified(uid, "tok-r") is False


def test_set_email_verified(store):
    uid = store.create_user(_user())
    assert store.set_email_verified(uid) is True
    assert store.get_by_id(uid).email_verified is True


def test_ping(store):
    assert store.ping() is True


def test_driver_failure_becomes_store_unavailable(store, monkeypatch):
    def broken_connect():
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(store.engine, "connect", broken_connect)

    with pytest.raises(StoreUnavailable):
        store.get_by_username("alice")
    assert store.ping() is False


def test_reset_password_drops_that_users_refresh_tokens(store):
    uid = store.create_user(_user())
    other = store.create_user(_user(username="bob", email="bob@x.com"))
    store.insert_refresh_token(RefreshToken(token="r-alice", user_id=uid, expires_at=_LATER))
    store.insert_refresh_token(RefreshToken(token="r-bob", user_id=other, expires_at=_LATER))
    _issue(store, PURPOSE_RESET_PASSWORD, uid, "tok-r")

    assert store.reset_password(uid, "tok-r", "$2b$12$reset") is True
    assert store.get_refresh_token("r-alice") is None
    assert store.get_refresh_token("r-bob") is not None


def test_reset_password_failure_changes_nothing(store):
    uid = store.create_user(_user())
    store.insert_refresh_token(RefreshToken(token="r-alice", user_id=uid, expires_at=_LATER))
    _issue(store, PURPOSE_RESET_PASSWORD, uid, "tok-r")

    def fail_session_delete(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("DELETE FROM REFRESH_TOKENS"):
            raise OperationalError(statement, parameters, sqlite3.OperationalError("database is locked"))

    event.listen(store.engine, "before_cursor_execute", fail_session_delete)
    try:
        with pytest.raises(StoreUnavailable):
            store.reset_password(uid, "tok-r", "$2b$12$reset")
    finally:
        event.remove(store.engine, "before_cursor_execute", fail_session_delete)

    assert store.get_by_id(uid).hashed_password == "$2b$12$hash"
    assert store.get_single_use_token(PURPOSE_RESET_PASSWORD, "tok-r") is not None
    assert store.get_refresh_token("r-alice") is not None
