"""
tests/conftest.py -- Shared test fixtures for AuthKeeper.

This module provides:
  - FakeClock: a settable clock injected into the token components
  - FakeMailer: a Mailer that records links instead of talking to SMTP
  - store / service: function-scoped unit-test fixtures over an in-memory DB
  - api_client: module-scoped TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for api_client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Both fixtures pin one connection with StaticPool, which also
keeps the in-memory DB alive for the fixture's lifetime.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from api.main import app
from auth.refresh import RefreshTokenLedger
from auth.service import AuthService, build_service
from auth.single_use import SingleUseTokenManager
from auth.store import UserStore
from auth.tokens import AccessTokenIssuer
from core.config import get_settings
from core.mailer import MailDeliveryError, Mailer

TEST_SECRET = "test-secret-key-with-at-least-32-characters"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock. Tests move time with advance() instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailer(Mailer):
    """Records (kind, recipient, link) for every message instead of sending it.

    Set fail=True to make the next sends raise MailDeliveryError.
    """

    def __init__(self) -> None:
        super().__init__()
        self.links: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise MailDeliveryError("SMTP server unreachable")

    def send_verification_email(self, to: str, link: str) -> None:
        super().send_verification_email(to, link)
        self.links.append(("verify", to, link))

    def send_password_reset_email(self, to: str, link: str) -> None:
        super().send_password_reset_email(to, link)
        self.links.append(("reset", to, link))

    def last_token(self, kind: str) -> str:
        """Return the token at the end of the most recent link of the given kind."""
        for sent_kind, _to, link in reversed(self.links):
            if sent_kind == kind:
                return link.rsplit("/", 1)[-1]
        raise AssertionError(f"no {kind} mail was sent")


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:", poolclass=StaticPool)
    yield s
    s.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def service(store: UserStore, clock: FakeClock, mailer: FakeMailer) -> AuthService:
    """AuthService over an in-memory store with every component on the fake clock."""
    return AuthService(
        store=store,
        access_tokens=AccessTokenIssuer(TEST_SECRET, clock=clock),
        refresh_tokens=RefreshTokenLedger(store, clock=clock),
        single_use_tokens=SingleUseTokenManager(store, clock=clock),
        mailer=mailer,
        base_url="http://app.test",
    )


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(
        db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true",
        poolclass=StaticPool,
    )


def _patch_lifespan(user_store: UserStore, auth_service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_service = auth_service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, FakeMailer], None, None]:
    """Yield (client, mailer) for HTTP integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but an isolated in-memory store. Verification and
    reset links land in mailer.links.
    """
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    mailer = FakeMailer()
    auth_service = build_service(get_settings(), user_store, mailer=mailer)

    app.router.lifespan_context = _patch_lifespan(user_store, auth_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    user_store.close()
