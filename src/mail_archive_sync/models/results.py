"""Result and progress models returned by the sync operations."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from mail_archive_sync.models.mail_item import MailItem


class LogLevel(str, Enum):
    """Severity of a sync log line."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogEntry(BaseModel):
    """One line of the user-facing operation log."""

    timestamp: datetime
    level: LogLevel
    message: str


class ScanResult(BaseModel):
    """What the partition store currently holds."""

    keys: list[str] = Field(default_factory=list, description="All document keys")
    legacy_keys: list[str] = Field(default_factory=list, description="Keys in the legacy flat layout")
    partition_count: int = Field(default=0, description="Number of month partitions")
    latest_key: Optional[str] = Field(default=None, description="Most recent month partition key")
    most_recent_item_timestamp: Optional[datetime] = Field(
        default=None, description="Latest resolvable message timestamp across all documents"
    )
    needs_migration: bool = Field(default=False)


class WeekWindow(BaseModel):
    """An inclusive window of at most seven days."""

    start: date
    end: date
    label: str = Field(description="Display label, e.g. 'Jan 1 – Jan 7'")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


class FetchFailure(BaseModel):
    """Marks a message that could not be fetched."""

    message_id: str
    error: str


class ExportProgress(BaseModel):
    """Progress snapshot emitted while a weekly export runs."""

    current_week: str = ""
    week_progress: int = Field(default=0, ge=0, le=100, description="Percent done within the week")
    total_weeks: int = 0
    completed_weeks: int = 0
    failed_weeks: int = 0
    total_emails: int = Field(default=0, description="Message ids found so far")
    processed_emails: int = Field(default=0, description="Messages fetched so far")
    current_step: str = ""


class WeekSummary(BaseModel):
    """Outcome of one week of an export."""

    label: str
    start: date
    end: date
    query: str
    found: int = 0
    fetched: int = 0
    failed_fetches: int = 0
    failed: bool = False
    error: Optional[str] = None


class ExportResult(BaseModel):
    """Aggregated result of a weekly export."""

    start: date
    end: date
    emails: list[MailItem] = Field(default_factory=list)
    weekly_breakdown: list[WeekSummary] = Field(default_factory=list)
    total_emails: int = 0

    @property
    def failed_weeks(self) -> list[WeekSummary]:
        return [w for w in self.weekly_breakdown if w.failed]


class MonthMergeOutcome(BaseModel):
    """Outcome of merging new messages into one month partition."""

    month: str
    new_items: int = 0
    duplicates: int = 0
    total: int = 0
    created: bool = False
    full_data_saved: int = Field(default=0, description="Full message documents written")
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class SmartFetchResult(BaseModel):
    """Result of one incremental sync run."""

    success: bool = False
    watermark: Optional[datetime] = None
    query: Optional[str] = None
    listed: int = 0
    fetched: int = 0
    failed_fetches: int = 0
    skipped_undated: int = 0
    months: list[MonthMergeOutcome] = Field(default_factory=list)
    new_items: int = 0
    duplicates: int = 0
    full_data_saved: int = 0
    scan: Optional[ScanResult] = None
    logs: list[LogEntry] = Field(default_factory=list)
    error: Optional[str] = None


class MigrationResult(BaseModel):
    """Result of migrating legacy documents into month partitions."""

    success: bool = False
    files_processed: int = 0
    emails_migrated: int = 0
    duplicates_removed: int = 0
    partitions_written: int = 0
    backup_location: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)


class OperationResult(BaseModel):
    """Envelope returned by every host-facing operation."""

    success: bool
    error: Optional[str] = None
    logs: list[LogEntry] = Field(default_factory=list)
    data: Any = None
