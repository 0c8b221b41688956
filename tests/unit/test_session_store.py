"""Unit tests for the session store."""

from pathlib import Path

import pytest

from mail_archive_sync.cache import SessionStore
from mail_archive_sync.models import UserProfile
from mail_archive_sync.storage.local import LocalStore


@pytest.fixture
def sessions(tmp_path: Path, clock) -> SessionStore:
    store = LocalStore(tmp_path / "local.sqlite3", quota_bytes=1024 * 1024)
    return SessionStore(store, clock=clock)


def test_persist_sets_ten_minute_expiry(sessions, clock) -> None:
    session = sessions.persist("token", UserProfile(email="me@example.com"))

    assert session.issued_at == clock.now
    assert (session.expires_at - session.issued_at).total_seconds() == 600


def test_session_valid_before_expiry(sessions, clock) -> None:
    sessions.persist("token", UserProfile(email="me@example.com"))

    clock.advance(minutes=9)
    session = sessions.retrieve()

    assert session is not None
    assert session.access_token == "token"
    assert session.profile.email == "me@example.com"


def test_session_purged_after_expiry(sessions, clock) -> None:
    sessions.persist("token", UserProfile(email="me@example.com"))

    clock.advance(minutes=11)

    assert sessions.retrieve() is None
    # Purged, so moving the clock back does not resurrect it.
    clock.advance(minutes=-11)
    assert sessions.retrieve() is None


def test_invalidate(sessions) -> None:
    sessions.persist("token", UserProfile(email="me@example.com"))

    sessions.invalidate()

    assert sessions.retrieve() is None
