"""Month partition document model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mail_archive_sync.models.mail_item import MailItem


class DateRange(BaseModel):
    """Inclusive calendar range covered by a document (YYYY-MM-DD strings)."""

    start: str
    end: str


class MigrationInfo(BaseModel):
    """Bookkeeping attached to partitions produced from legacy documents."""

    model_config = ConfigDict(populate_by_name=True)

    migrated_at: str = Field(alias="migratedAt")
    source_files: list[str] = Field(default_factory=list, alias="sourceFiles")
    duplicates_removed: int = Field(default=0, alias="duplicatesRemoved")


class Partition(BaseModel):
    """All messages of one calendar month, plus bookkeeping fields."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    date_range: DateRange = Field(alias="dateRange")
    total_emails: int = Field(default=0, alias="totalEmails")
    emails: list[MailItem] = Field(default_factory=list)
    export_date: str = Field(alias="exportDate", description="Set on creation, never changed")
    fetched_by: str = Field(default="unknown", alias="fetchedBy")
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    migration_info: MigrationInfo | None = Field(default=None, alias="migrationInfo")
    version: str | None = Field(default=None, description="Item layout version")

    def to_document(self) -> dict[str, Any]:
        """Serialize using the stored (camelCase) field names."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
