"""Contract of the remote mail provider consumed by the sync engine."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mail_archive_sync.models import MailItem


@runtime_checkable
class MailProvider(Protocol):
    """Minimal capability set the fetch and sync paths rely on.

    Queries use the Gmail search syntax, in particular
    ``after:YYYY/MM/DD before:YYYY/MM/DD``.
    """

    @property
    def account_id(self) -> str | None:
        """Identity of the authenticated account, if known."""
        ...

    async def authenticate(self) -> None:
        """Raise ConfigurationError or AuthenticationError if unusable."""
        ...

    async def list_message_ids(self, query: str, max_results: int | None = None) -> list[str]:
        ...

    async def get_message(self, message_id: str) -> MailItem:
        ...
