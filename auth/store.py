"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_refresh_token /
_row_to_single_use_token are the mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(username) and UNIQUE(email) are enforced by the schema, not by
  lookup-before-insert alone. Two concurrent registrations for the same name
  both pass the service-level lookup, but only one INSERT succeeds; the other
  raises sqlalchemy.exc.IntegrityError, which the service maps to a conflict.

  Single-use tokens are consumed with a DELETE guarded on the token value
  inside the same transaction as the state change it authorizes. If two
  requests race on the same token, exactly one DELETE hits a row.

Failure model:
  Every statement runs under _guard(). IntegrityError propagates unchanged
  (it is a domain signal); every other SQLAlchemyError -- lock timeouts,
  pool exhaustion, dropped connections -- becomes StoreUnavailable. Nothing
  is retried here.

Timestamps:
  created_at columns are ISO 8601 strings (display only). expires_at columns
  are REAL epoch seconds so expiry comparisons and purges are plain numeric
  comparisons in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import StoreUnavailable
from auth.models import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL, RefreshToken, SingleUseToken, User

logger = logging.getLogger("authkeeper.store")

_DEFAULT_DB_URL = "sqlite:///authkeeper.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token", String(64), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("expires_at", Float, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)

# One live token per (purpose, user_id). token is UNIQUE so lookups by value
# hit an index and two users can never hold the same token.
_single_use_tokens = Table(
    "single_use_tokens",
    _metadata,
    Column("purpose", String(30), nullable=False),
    Column("user_id", String(36), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", Float, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("purpose", "user_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_epoch(moment: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    """Translate driver/pool failures into StoreUnavailable."""
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise StoreUnavailable(f"Row store unavailable during {operation}") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, RefreshToken, and SingleUseToken rows.

    The store is the only shared mutable resource in the process. It is
    created once (API lifespan or CLI) and passed explicitly to every
    component that needs it.

    Usage:
        store = UserStore("sqlite:///authkeeper.db", timeout=5.0)
        user_id = store.create_user(User(username="alice", email="a@x.com", hashed_password=h))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0, poolclass=None) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if poolclass is not None:
            engine_kwargs["poolclass"] = poolclass
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # SQLite busy timeout: how long a writer waits on a locked DB.
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        with _guard("create_schema"):
            _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the store answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. AuthService.register() catches it as a concurrent duplicate.
        """
        user_id = user.id or str(uuid.uuid4())
        with _guard("create_user"), self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    email_verified=1 if user.email_verified else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with _guard("get_by_username"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Callers pass the normalized (lower-case) form."""
        with _guard("get_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with _guard("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_email_verified(self, user_id: str) -> bool:
        """Set email_verified without a token (operator CLI). Returns False if user_id was not found."""
        with _guard("set_email_verified"), self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(email_verified=1))
            conn.commit()
        return result.rowcount > 0

    def mark_email_verified(self, user_id: str, token: str) -> bool:
        """Consume a verify_email token and set email_verified in one transaction.

        Returns False (and changes nothing) if the token row is already gone,
        meaning a concurrent request consumed or replaced it first.
        """
        with _guard("mark_email_verified"), self.engine.begin() as conn:
            if not self._delete_single_use(conn, PURPOSE_VERIFY_EMAIL, user_id, token):
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(email_verified=1))
        return True

    def reset_password(self, user_id: str, token: str, hashed_password: str) -> bool:
        """Consume a reset_password token, store the new hash and drop the user's
        refresh tokens in one transaction.

        Either all three happen or none do: a failure leaves the old password,
        the reset token and the existing sessions exactly as they were.
        """
        with _guard("reset_password"), self.engine.begin() as conn:
            if not self._delete_single_use(conn, PURPOSE_RESET_PASSWORD, user_id, token):
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return True

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def insert_refresh_token(self, record: RefreshToken) -> None:
        """Persist a new refresh token row keyed by its token string."""
        with _guard("insert_refresh_token"), self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token=record.token,
                    user_id=record.user_id,
                    expires_at=_to_epoch(record.expires_at),
                    created_at=_now_iso(),
                )
            )
            conn.commit()

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Point lookup by token string. Returns None if absent."""
        with _guard("get_refresh_token"), self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        """Delete a refresh token row. Returns False if it did not exist."""
        with _guard("delete_refresh_token"), self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: str) -> int:
        """Delete every refresh token owned by user_id. Returns rows removed."""
        with _guard("delete_refresh_tokens_for_user"), self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_refresh_tokens(self, now: datetime) -> int:
        """Delete all refresh tokens with expires_at <= now. Returns rows removed."""
        with _guard("purge_expired_refresh_tokens"), self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_epoch(now)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Single-use tokens
    # ------------------------------------------------------------------

    def upsert_single_use_token(self, record: SingleUseToken) -> None:
        """Store a token for (purpose, user_id), replacing any previous one."""
        key = (_single_use_tokens.c.purpose == record.purpose) & (_single_use_tokens.c.user_id == record.user_id)
        with _guard("upsert_single_use_token"), self.engine.begin() as conn:
            conn.execute(_single_use_tokens.delete().where(key))
            conn.execute(
                _single_use_tokens.insert().values(
                    purpose=record.purpose,
                    user_id=record.user_id,
                    token=record.token,
                    expires_at=_to_epoch(record.expires_at),
                    created_at=_now_iso(),
                )
            )

    def get_single_use_token(self, purpose: str, token: str) -> SingleUseToken | None:
        """Look up a live token by value within one purpose."""
        with _guard("get_single_use_token"), self.engine.connect() as conn:
            row = conn.execute(
                _single_use_tokens.select().where(
                    (_single_use_tokens.c.purpose == purpose) & (_single_use_tokens.c.token == token)
                )
            ).fetchone()
        return _row_to_single_use_token(row) if row is not None else None

    def delete_single_use_token(self, purpose: str, token: str) -> bool:
        """Delete a token by value. Returns False if it did not exist."""
        with _guard("delete_single_use_token"), self.engine.connect() as conn:
            result = conn.execute(
                _single_use_tokens.delete().where(
                    (_single_use_tokens.c.purpose == purpose) & (_single_use_tokens.c.token == token)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def purge_expired_single_use_tokens(self, now: datetime) -> int:
        """Delete all single-use tokens with expires_at <= now. Returns rows removed."""
        with _guard("purge_expired_single_use_tokens"), self.engine.connect() as conn:
            result = conn.execute(
                _single_use_tokens.delete().where(_single_use_tokens.c.expires_at <= _to_epoch(now))
            )
            conn.commit()
        return result.rowcount

    @staticmethod
    def _delete_single_use(conn, purpose: str, user_id: str, token: str) -> bool:
        result = conn.execute(
            _single_use_tokens.delete().where(
                (_single_use_tokens.c.purpose == purpose)
                & (_single_use_tokens.c.user_id == user_id)
                & (_single_use_tokens.c.token == token)
            )
        )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        token=row.token,
        user_id=row.user_id,
        expires_at=_from_epoch(row.expires_at),
        created_at=row.created_at,
    )


def _row_to_single_use_token(row) -> SingleUseToken:
    return SingleUseToken(
        token=row.token,
        user_id=row.user_id,
        purpose=row.purpose,
        expires_at=_from_epoch(row.expires_at),
        created_at=row.created_at,
    )
