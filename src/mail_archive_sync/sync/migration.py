"""Regroup legacy range exports into month partitions.

Legacy documents are backed up first, then their messages are deduplicated,
bucketed by month and merged into the month partitions (existing partitions
keep their messages). Legacy documents are removed only if every month was
written without error, so a failed run can simply be repeated.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from mail_archive_sync.exceptions import MailSyncError
from mail_archive_sync.gmail.parsing import format_timestamp
from mail_archive_sync.models import MailItem, MigrationInfo, MigrationResult
from mail_archive_sync.storage.base import PartitionStore
from mail_archive_sync.sync.log import LogListener, SyncLog
from mail_archive_sync.sync.partitioning import deduplicate, group_by_month, merge_partition

logger = structlog.get_logger()

MIGRATION_FETCHED_BY = "migration-script"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MigrationTool:
    """Moves legacy range exports into the month-partitioned layout."""

    def __init__(
        self,
        store: PartitionStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def migrate(self, listener: LogListener | None = None) -> MigrationResult:
        """Run one migration.

        Args:
            listener: Optional callback receiving every log entry as it is added.

        Returns:
            MigrationResult: ``success`` is False when any file or month failed;
            in that case the legacy documents are left in place.
        """

        log = SyncLog("migration", listener, clock=self._clock)
        result = MigrationResult()
        log.info("Starting migration process...")

        try:
            await self._migrate(log, result)
        except (MailSyncError, OSError) as exc:
            logger.exception("migration_failed", error=str(exc))
            result.errors.append(f"Migration failed: {exc}")
            log.error(f"Migration failed: {exc}")

        result.success = not result.errors
        result.logs = log.entries
        return result

    async def _migrate(self, log: SyncLog, result: MigrationResult) -> None:
        legacy_keys = await self._store.list_legacy()
        if not legacy_keys:
            log.success("No files need migration")
            return
        log.info(f"Found {len(legacy_keys)} file(s) to migrate")

        # A backup failure aborts before anything is written or removed.
        result.backup_location = await self._store.backup_legacy(legacy_keys)
        log.info(f"Created backup: {result.backup_location}")

        collected: list[MailItem] = []
        source_files: list[str] = []
        for key in legacy_keys:
            try:
                items = await self._store.read_legacy(key)
            except MailSyncError as exc:
                message = f"Error processing {key}: {exc}"
                result.errors.append(message)
                log.error(message)
                continue
            collected.extend(items)
            source_files.append(f"{key}.json")
            result.files_processed += 1
            log.info(f"Read {len(items)} emails from {key}.json")

        log.info(f"Total emails collected: {len(collected)}")
        unique = deduplicate(collected)
        result.duplicates_removed = len(collected) - len(unique)
        result.emails_migrated = len(unique)
        if result.duplicates_removed:
            log.info(f"Removed {result.duplicates_removed} duplicate(s)")

        grouped, undated = group_by_month(unique)
        for item in undated:
            log.warning(f"Skipping email {item.id} (no valid date)")
        log.info(f"Grouping into {len(grouped)} month(s)")

        info = MigrationInfo(
            migrated_at=format_timestamp(self._clock()),
            source_files=source_files,
            duplicates_removed=result.duplicates_removed,
        )
        for month in sorted(grouped):
            await self._write_month(month, grouped[month], info, log, result)

        if result.errors:
            log.warning(f"Migration completed with {len(result.errors)} error(s); legacy files kept")
            return

        for key in legacy_keys:
            try:
                await self._store.remove_legacy(key)
            except OSError as exc:
                log.warning(f"Could not delete {key}.json: {exc}")
                continue
            log.info(f"Removed old file: {key}.json")

        log.success(
            f"Migration complete! {result.emails_migrated} emails organized into "
            f"{result.partitions_written} monthly file(s)"
        )

    async def _write_month(
        self,
        month: str,
        items: list[MailItem],
        info: MigrationInfo,
        log: SyncLog,
        result: MigrationResult,
    ) -> None:
        try:
            async with self._store.lock(month):
                existing = await self._store.read(month)
                partition, stats = merge_partition(
                    month,
                    existing,
                    items,
                    fetched_by=existing.fetched_by if existing is not None else MIGRATION_FETCHED_BY,
                    now=self._clock(),
                )
                partition = partition.model_copy(update={"migration_info": info})
                await self._store.write(month, partition)
        except MailSyncError as exc:
            message = f"Error creating monthly file for {month}: {exc}"
            result.errors.append(message)
            log.error(message)
            return

        result.partitions_written += 1
        action = "Created" if stats.created else "Merged into"
        log.info(f"{action} gmail-export-{month}.json ({stats.total} emails)")
