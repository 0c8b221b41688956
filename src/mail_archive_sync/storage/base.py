"""Partition store interface.

The sync engine and the migration tool only ever talk to this interface:
month partitions are read and written as whole documents keyed ``YYYY-MM``,
and documents in the legacy flat layout can be listed, read, backed up and
removed.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from mail_archive_sync.exceptions import MailSyncError
from mail_archive_sync.models import MailItem, Partition, ScanResult
from mail_archive_sync.sync.partitioning import resolve_item_date

if TYPE_CHECKING:
    from mail_archive_sync.models import MigrationResult

logger = structlog.get_logger()


def is_legacy_key(key: str) -> bool:
    """Legacy documents are date-range exports (``...-to-...``) or merged dumps."""

    return "-to-" in key or "merged" in key


def _latest(items: list[MailItem], current: datetime | None) -> datetime | None:
    for item in items:
        resolved = resolve_item_date(item)
        if resolved is not None and (current is None or resolved > current):
            current = resolved
    return current


class PartitionStore(ABC):
    """Month-keyed document store.

    Writers must hold ``lock(month)`` around a read-modify-write of a month
    partition so that only one writer touches a partition at a time.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, month: str) -> asyncio.Lock:
        """Return the lock guarding the partition for ``month``."""

        lock = self._locks.get(month)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[month] = lock
        return lock

    @abstractmethod
    async def list_months(self) -> list[str]:
        """Month keys of all stored partitions, ascending."""

    @abstractmethod
    async def list_legacy(self) -> list[str]:
        """Keys of all documents in the legacy flat layout."""

    @abstractmethod
    async def read(self, month: str) -> Partition | None:
        """Read a partition; None if absent. Raises ValidationError if corrupt."""

    @abstractmethod
    async def write(self, month: str, partition: Partition) -> None:
        """Replace the whole partition document. Raises PartitionWriteError."""

    @abstractmethod
    async def read_legacy(self, key: str) -> list[MailItem]:
        """Return the messages of a legacy document."""

    @abstractmethod
    async def backup_legacy(self, keys: list[str]) -> str:
        """Copy legacy documents aside; returns a description of the location."""

    @abstractmethod
    async def remove_legacy(self, key: str) -> None:
        """Delete a legacy document."""

    async def scan(self) -> ScanResult:
        """Summarize the store, including the latest message timestamp.

        Unreadable documents are skipped with a warning.
        """

        months = await self.list_months()
        legacy = await self.list_legacy()

        latest: datetime | None = None
        for month in months:
            try:
                partition = await self.read(month)
            except MailSyncError as exc:
                logger.warning("partition_scan_skipped", month=month, error=str(exc))
                continue
            if partition is not None:
                latest = _latest(partition.emails, latest)

        for key in legacy:
            try:
                items = await self.read_legacy(key)
            except MailSyncError as exc:
                logger.warning("legacy_scan_skipped", key=key, error=str(exc))
                continue
            latest = _latest(items, latest)

        result = ScanResult(
            keys=months,
            legacy_keys=legacy,
            partition_count=len(months),
            latest_key=months[-1] if months else None,
            most_recent_item_timestamp=latest,
            needs_migration=bool(legacy),
        )
        logger.info(
            "partition_store_scanned",
            partition_count=result.partition_count,
            legacy_count=len(legacy),
            most_recent=latest.isoformat() if latest else None,
        )
        return result

    async def migrate_legacy(self) -> MigrationResult:
        """Regroup legacy documents into month partitions."""

        from mail_archive_sync.sync.migration import MigrationTool

        return await MigrationTool(self).migrate()
