"""Local cache and session models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mail_archive_sync.models.mail_item import MailHeader


class CachedItem(BaseModel):
    """Size-reduced copy of a MailItem kept in the result cache."""

    id: str
    snippet: str = ""
    headers: list[MailHeader] = Field(default_factory=list)


class CacheEntry(BaseModel):
    """Snapshot of the last fetched result set."""

    model_config = ConfigDict(populate_by_name=True)

    emails: list[CachedItem] = Field(default_factory=list)
    fetch_time: float = Field(alias="fetchTime", description="Fetch duration in milliseconds")
    timestamp: datetime = Field(description="Capture time")
    version: str = Field(default="1.1")
    count: int = Field(default=0, description="Number of items before any reduction")
    note: str | None = Field(default=None)
    degraded: bool = Field(default=False)


class UserProfile(BaseModel):
    """The account a session belongs to."""

    email: str
    name: str | None = None
    picture: str | None = None


class Session(BaseModel):
    """An access credential with a short absolute expiry."""

    access_token: str
    profile: UserProfile
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
