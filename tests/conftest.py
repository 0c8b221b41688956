"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mail_archive_sync.models import MailHeader, MailItem


def make_item(message_id: str, date: str | None = None, **fields) -> MailItem:
    """Build a MailItem with an ISO ``date`` and From/Subject headers."""
    headers = fields.pop("headers", None)
    if headers is None:
        headers = [
            MailHeader(name="From", value=fields.get("sender") or "alice@example.com"),
            MailHeader(name="Subject", value=fields.get("subject") or f"Message {message_id}"),
        ]
    return MailItem(id=message_id, date=date, snippet=fields.pop("snippet", f"snippet {message_id}"), headers=headers, **fields)


class FakeMailProvider:
    """In-memory MailProvider.

    ``list_message_ids`` returns ``query_results[query]`` when configured and
    every known message id otherwise.
    """

    def __init__(self, messages: list[MailItem] | None = None, account: str = "me@example.com") -> None:
        self.messages: dict[str, MailItem] = {m.id: m for m in messages or []}
        self.account = account
        self.query_results: dict[str, list[str]] = {}
        self.list_errors: dict[str, Exception] = {}
        self.get_errors: dict[str, Exception] = {}
        self.auth_error: Exception | None = None
        self.queries: list[str] = []
        self.requested: list[str] = []
        self.authenticated = False

    @property
    def account_id(self) -> str | None:
        return self.account if self.authenticated else None

    async def authenticate(self) -> None:
        if self.auth_error is not None:
            raise self.auth_error
        self.authenticated = True

    async def list_message_ids(self, query: str, max_results: int | None = None) -> list[str]:
        self.queries.append(query)
        if query in self.list_errors:
            raise self.list_errors[query]
        ids = self.query_results.get(query, list(self.messages))
        return ids if max_results is None else ids[:max_results]

    async def get_message(self, message_id: str) -> MailItem:
        self.requested.append(message_id)
        await asyncio.sleep(0)
        if message_id in self.get_errors:
            raise self.get_errors[message_id]
        return self.messages[message_id]


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at 2024-03-15 12:00 UTC."""
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_provider() -> FakeMailProvider:
    return FakeMailProvider()


@pytest.fixture
def mock_settings(tmp_path: Path):
    """Provide mock settings for testing."""
    from mail_archive_sync.config import Settings

    return Settings(
        gmail_credentials_path=tmp_path / "credentials.json",
        gmail_token_path=tmp_path / "token.json",
        partition_dir=tmp_path / "email",
        local_store_path=tmp_path / "local.sqlite3",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def sample_email_data() -> dict:
    """Provide sample Gmail API message data."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Weekly Newsletter - Python Tips",
        "payload": {
            "headers": [
                {"name": "Subject", "value": "Weekly Newsletter - Python Tips"},
                {"name": "From", "value": "newsletter@python.org"},
                {"name": "To", "value": "user@example.com"},
                {"name": "Date", "value": "Tue, 05 Mar 2024 09:30:00 +0100"},
            ],
            "body": {"data": "encoded_body_data"},
        },
    }


@pytest.fixture
def item_factory():
    """Factory building MailItems, see ``make_item``."""
    return make_item


@pytest.fixture
def provider_factory():
    return FakeMailProvider
