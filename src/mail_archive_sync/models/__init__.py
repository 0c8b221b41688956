"""Data models for Mail Archive Sync.

This module contains Pydantic models for data validation and serialization.
"""

from mail_archive_sync.models.cache import CachedItem, CacheEntry, Session, UserProfile
from mail_archive_sync.models.full_message import CleanupError, CleanupResult, FullMessage, StorageStats
from mail_archive_sync.models.mail_item import AttachmentInfo, MailHeader, MailItem
from mail_archive_sync.models.partition import DateRange, MigrationInfo, Partition
from mail_archive_sync.models.results import (
    ExportProgress,
    ExportResult,
    FetchFailure,
    LogEntry,
    LogLevel,
    MigrationResult,
    MonthMergeOutcome,
    OperationResult,
    ScanResult,
    SmartFetchResult,
    WeekSummary,
    WeekWindow,
)

__all__ = [
    "AttachmentInfo",
    "CachedItem",
    "CacheEntry",
    "CleanupError",
    "CleanupResult",
    "DateRange",
    "ExportProgress",
    "ExportResult",
    "FetchFailure",
    "FullMessage",
    "LogEntry",
    "LogLevel",
    "MailHeader",
    "MailItem",
    "MigrationInfo",
    "MigrationResult",
    "MonthMergeOutcome",
    "OperationResult",
    "Partition",
    "ScanResult",
    "Session",
    "SmartFetchResult",
    "StorageStats",
    "UserProfile",
    "WeekSummary",
    "WeekWindow",
]
