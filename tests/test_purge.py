"""Unit tests for the background purge pass in api/main.py."""

import pytest

from api.main import purge_expired_tokens
from auth.models import PURPOSE_RESET_PASSWORD


@pytest.fixture
def alice_id(service):
    return service.register("alice", "alice@x.com", "pw").id


def test_purge_removes_expired_tokens_of_both_kinds(service, clock, alice_id):
    service.refresh_tokens.issue(alice_id)
    service.single_use_tokens.issue(alice_id, PURPOSE_RESET_PASSWORD)
    clock.advance(days=8)

    # Registration also left a verify_email token behind.
    assert purge_expired_tokens(service) == (1, 2)
    assert purge_expired_tokens(service) == (0, 0)


def test_purge_keeps_live_tokens(service, alice_id):
    token = service.refresh_tokens.issue(alice_id)
    assert purge_expired_tokens(service) == (0, 0)
    assert service.refresh_tokens.validate(token) == alice_id
