"""Host-facing operations.

Every public coroutine returns an OperationResult and never raises: errors
are reported through ``success``/``error`` and, for everything except
``scan``, through the log stream.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog

from mail_archive_sync.cache import ResultCache, SessionStore
from mail_archive_sync.config import Settings, get_settings
from mail_archive_sync.exceptions import MailSyncError
from mail_archive_sync.fetch import BatchFetcher, WeeklyExporter
from mail_archive_sync.fetch.export import ProgressCallback
from mail_archive_sync.gmail.client import GmailClient
from mail_archive_sync.gmail.parsing import format_timestamp
from mail_archive_sync.models import ExportProgress, ExportResult, MailItem, OperationResult, Partition
from mail_archive_sync.provider import MailProvider
from mail_archive_sync.storage import (
    FilePartitionStore,
    FullMessageStore,
    LocalStore,
    PartitionStore,
    StorageMaintenance,
    full_data_relative_path,
)
from mail_archive_sync.sync.engine import IncrementalSyncEngine
from mail_archive_sync.sync.log import LogListener, SyncLog
from mail_archive_sync.sync.migration import MigrationTool
from mail_archive_sync.sync.partitioning import item_day
from mail_archive_sync.utils import Sleep

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def export_filename(start: date, end: date) -> str:
    return f"gmail-export-{start.isoformat()}-to-{end.isoformat()}.json"


def export_document(result: ExportResult, *, fetched_by: str, now: datetime) -> dict[str, Any]:
    """Flat export document, in the legacy range layout MigrationTool reads."""

    return {
        "dateRange": {"start": result.start.isoformat(), "end": result.end.isoformat()},
        "totalEmails": result.total_emails,
        "weeklyBreakdown": [
            {
                "week": week.label,
                "start": week.start.isoformat(),
                "end": week.end.isoformat(),
                "found": week.found,
                "fetched": week.fetched,
                "failed": week.failed,
            }
            for week in result.weekly_breakdown
        ],
        "emails": [item.to_document() for item in result.emails],
        "exportDate": format_timestamp(now),
        "fetchedBy": fetched_by,
    }


def _write_json(path: Path, document: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)


class SyncService:
    """Wires the provider, the stores and the sync operations together."""

    def __init__(
        self,
        settings: Settings | None = None,
        provider: MailProvider | None = None,
        store: PartitionStore | None = None,
        local_store: LocalStore | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        self._clock = clock
        self._sleep = sleep

        self.local_store = local_store or LocalStore(Path(s.local_store_path), s.local_store_quota_bytes)
        self.session_store = SessionStore(
            self.local_store,
            key=s.session_key,
            ttl=timedelta(minutes=s.session_ttl_minutes),
            clock=clock,
        )
        self.cache = ResultCache(
            self.local_store,
            key=s.cache_key,
            max_bytes=s.cache_max_bytes,
            ttl=timedelta(minutes=s.cache_ttl_minutes),
            clock=clock,
        )
        self.provider = provider or GmailClient(s, session_store=self.session_store)
        self.store = store or FilePartitionStore(Path(s.partition_dir))
        base_dir = self.store.directory if isinstance(self.store, FilePartitionStore) else Path(s.partition_dir)
        self.full_store = FullMessageStore(base_dir)
        self.maintenance = StorageMaintenance(self.store, self.full_store)
        self.fetcher = BatchFetcher(
            self.provider,
            retries=s.fetch_retries,
            retry_delay=s.retry_delay_seconds,
            retry_backoff=s.retry_backoff,
            sleep=sleep,
        )

    # Partition store

    async def scan(self) -> OperationResult:
        try:
            scan = await self.store.scan()
        except Exception as exc:  # noqa: BLE001
            logger.exception("scan_failed", error=str(exc))
            return OperationResult(success=False, error=str(exc))
        return OperationResult(success=True, data=scan)

    async def read(self, month: str) -> OperationResult:
        log = SyncLog("read", clock=self._clock)
        try:
            partition = await self.store.read(month)
        except Exception as exc:  # noqa: BLE001
            log.error(f"Failed to read {month}: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        if partition is None:
            log.info(f"No partition for {month}")
        else:
            log.info(f"Read {month} ({partition.total_emails} emails)")
        return OperationResult(success=True, logs=log.entries, data=partition)

    async def write(self, month: str, partition: Partition) -> OperationResult:
        """Replace a month partition, e.g. after the user toggled ``ignored`` flags."""

        log = SyncLog("write", clock=self._clock)
        try:
            async with self.store.lock(month):
                await self.store.write(month, partition)
        except Exception as exc:  # noqa: BLE001
            log.error(f"Failed to write {month}: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        log.success(f"Wrote {month} ({partition.total_emails} emails)")
        return OperationResult(success=True, logs=log.entries)

    async def migrate(self, listener: LogListener | None = None) -> OperationResult:
        try:
            result = await MigrationTool(self.store, clock=self._clock).migrate(listener)
        except Exception as exc:  # noqa: BLE001
            logger.exception("migration_crashed", error=str(exc))
            return OperationResult(success=False, error=str(exc))

        error = "; ".join(result.errors) or None
        return OperationResult(success=result.success, error=error, logs=result.logs, data=result)

    async def set_ignored(
        self,
        message_id: str,
        ignored: bool | None = None,
        month: str | None = None,
    ) -> OperationResult:
        """Set (or toggle, when ``ignored`` is None) a message's ignore flag.

        Ignoring a message deletes its full data document; restoring it links
        the document again if it is still on disk. The change is written back
        to the month partition holding the message.
        """

        log = SyncLog("ignore", clock=self._clock)
        try:
            months = [month] if month else sorted(await self.store.list_months(), reverse=True)
            for key in months:
                async with self.store.lock(key):
                    partition = await self.store.read(key)
                    if partition is None:
                        continue
                    index = next((i for i, item in enumerate(partition.emails) if item.id == message_id), None)
                    if index is None:
                        continue

                    item = partition.emails[index]
                    updated = await self._apply_ignored(item, not item.ignored if ignored is None else ignored)
                    emails = list(partition.emails)
                    emails[index] = updated
                    await self.store.write(
                        key,
                        partition.model_copy(
                            update={"emails": emails, "last_updated": format_timestamp(self._clock())}
                        ),
                    )
                verb = "Ignored" if updated.ignored else "Restored"
                log.success(f"{verb} {message_id} in {key}")
                return OperationResult(success=True, logs=log.entries, data=updated)
        except Exception as exc:  # noqa: BLE001
            if not isinstance(exc, MailSyncError):
                logger.exception("set_ignored_crashed", message_id=message_id, error=str(exc))
            log.error(f"Could not update {message_id}: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        message = f"Email {message_id} not found"
        log.warning(message)
        return OperationResult(success=False, error=message, logs=log.entries)

    async def _apply_ignored(self, item: MailItem, ignored: bool) -> MailItem:
        day = item_day(item)
        path: str | None = None
        if day is not None:
            if ignored:
                await self.full_store.delete(item.id, day)
            elif await self.full_store.exists(item.id, day):
                path = full_data_relative_path(item.id, day)
        return item.model_copy(update={"ignored": ignored, "full_data_path": path})

    # Full message documents

    async def full_message(self, message_id: str, day: date) -> OperationResult:
        try:
            message = await self.full_store.load(message_id, day)
        except Exception as exc:  # noqa: BLE001
            logger.warning("full_message_load_failed", message_id=message_id, error=str(exc))
            return OperationResult(success=False, error=str(exc))
        if message is None:
            return OperationResult(success=False, error=f"No full data for {message_id} on {day.isoformat()}")
        return OperationResult(success=True, data=message)

    async def delete_full_message(self, message_id: str, day: date) -> OperationResult:
        log = SyncLog("full_data", clock=self._clock)
        try:
            deleted = await self.full_store.delete(message_id, day)
        except Exception as exc:  # noqa: BLE001
            log.error(f"Could not delete full data for {message_id}: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)
        if not deleted:
            message = f"No full data for {message_id} on {day.isoformat()}"
            log.warning(message)
            return OperationResult(success=False, error=message, logs=log.entries)
        log.success(f"Deleted full data for {message_id}")
        return OperationResult(success=True, logs=log.entries)

    # Maintenance

    async def storage_stats(self) -> OperationResult:
        try:
            stats = await self.maintenance.stats()
        except Exception as exc:  # noqa: BLE001
            logger.exception("storage_stats_failed", error=str(exc))
            return OperationResult(success=False, error=str(exc))
        return OperationResult(success=True, data=stats)

    async def cleanup(self, files: list[str] | None = None, dry_run: bool = False) -> OperationResult:
        """Delete full data files; by default every orphaned one.

        With ``dry_run`` nothing is deleted and ``data`` lists the candidates.
        """

        log = SyncLog("cleanup", clock=self._clock)
        try:
            targets = files if files is not None else await self.maintenance.find_orphans()
            if dry_run:
                log.info(f"{len(targets)} file(s) would be deleted")
                return OperationResult(success=True, logs=log.entries, data=targets)
            result = await self.maintenance.delete_files(targets)
        except Exception as exc:  # noqa: BLE001
            logger.exception("cleanup_crashed", error=str(exc))
            log.error(f"Cleanup failed: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        for failure in result.errors:
            log.warning(f"{failure.file}: {failure.error}")
        log.success(f"Deleted {len(result.deleted)} file(s)")
        error = f"{len(result.errors)} file(s) could not be deleted" if result.errors else None
        return OperationResult(success=not result.errors, error=error, logs=log.entries, data=result)

    # Remote fetch paths

    async def smart_fetch(self, listener: LogListener | None = None) -> OperationResult:
        log = SyncLog("smart_fetch", listener, clock=self._clock)
        try:
            scan = await self.store.scan()
        except Exception as exc:  # noqa: BLE001
            log.error(f"Scan failed: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        if scan.needs_migration:
            message = (
                f"{len(scan.legacy_keys)} legacy file(s) found. "
                "Run the migration before using Smart Fetch."
            )
            log.warning(message)
            return OperationResult(success=False, error=message, logs=log.entries, data=scan)

        s = self.settings
        engine = IncrementalSyncEngine(
            self.provider,
            self.store,
            self.fetcher,
            batch_size=s.sync_batch_size,
            batch_delay_ms=s.sync_batch_delay_ms,
            lookback_days=s.default_lookback_days,
            max_results=s.gmail_list_max_results,
            full_store=self.full_store if s.save_full_data else None,
            clock=self._clock,
            sleep=self._sleep,
        )
        try:
            result = await engine.run(listener)
        except Exception as exc:  # noqa: BLE001
            logger.exception("smart_fetch_crashed", error=str(exc))
            log.error(f"Smart Fetch failed: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        return OperationResult(success=result.success, error=result.error, logs=result.logs, data=result)

    async def export_range(
        self,
        start: date,
        end: date,
        output: Path | None = None,
        on_progress: ProgressCallback | None = None,
        listener: LogListener | None = None,
    ) -> OperationResult:
        """Export ``[start, end]`` week by week.

        When ``output`` is given, the flat export document is written there; a
        directory receives ``gmail-export-<start>-to-<end>.json``.
        """

        log = SyncLog("export", listener, clock=self._clock)
        log.info(f"Exporting {start.isoformat()} to {end.isoformat()}")
        s = self.settings
        exporter = WeeklyExporter(
            self.provider,
            self.fetcher,
            batch_size=s.export_batch_size,
            batch_delay_ms=s.export_batch_delay_ms,
            week_delay_ms=s.export_week_delay_ms,
            week_failure_delay_ms=s.export_week_failure_delay_ms,
            sleep=self._sleep,
        )

        last_step = ""

        async def track(progress: ExportProgress) -> None:
            nonlocal last_step
            if progress.current_step != last_step:
                last_step = progress.current_step
                log.add(progress.current_step)
            if on_progress is not None:
                maybe = on_progress(progress)
                if asyncio.iscoroutine(maybe):
                    await maybe

        try:
            await self.provider.authenticate()
            result = await exporter.export(start, end, track)
        except Exception as exc:  # noqa: BLE001
            if not isinstance(exc, MailSyncError):
                logger.exception("export_crashed", error=str(exc))
            log.error(f"Export failed: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        for week in result.failed_weeks:
            log.warning(f"Week {week.label} failed: {week.error}")

        if output is not None:
            path = output / export_filename(start, end) if output.is_dir() else output
            document = export_document(
                result,
                fetched_by=self.provider.account_id or "unknown",
                now=self._clock(),
            )
            try:
                await asyncio.to_thread(_write_json, path, document)
            except OSError as exc:
                logger.exception("export_write_failed", path=str(path), error=str(exc))
                log.error(f"Could not write {path}: {exc}")
                return OperationResult(success=False, error=str(exc), logs=log.entries, data=result)
            log.success(f"Saved {result.total_emails} emails to {path}")

        log.success(
            f"Export complete: {result.total_emails} emails, "
            f"{len(result.failed_weeks)} failed week(s)"
        )
        return OperationResult(success=True, logs=log.entries, data=result)

    async def recent(self, limit: int = 50) -> OperationResult:
        """Most recent messages, served from the result cache when it is fresh."""

        log = SyncLog("recent", clock=self._clock)
        try:
            cached = self.cache.load()
            if cached is not None:
                log.info(f"Loaded {len(cached.emails)} emails from cache")
                return OperationResult(success=True, logs=log.entries, data=cached)

            started = time.monotonic()
            await self.provider.authenticate()
            ids = await self.provider.list_message_ids("", max_results=limit)
            fetched = await self.fetcher.fetch_all(
                ids,
                batch_size=self.settings.sync_batch_size,
                inter_batch_delay_ms=self.settings.sync_batch_delay_ms,
            )
            duration_ms = (time.monotonic() - started) * 1000
            outcome = self.cache.save(fetched.items, duration_ms)
            entry = self.cache.load()
        except Exception as exc:  # noqa: BLE001
            if not isinstance(exc, MailSyncError):
                logger.exception("recent_fetch_crashed", error=str(exc))
            log.error(f"Fetching recent emails failed: {exc}")
            return OperationResult(success=False, error=str(exc), logs=log.entries)

        log.info(f"Fetched {len(fetched.items)} emails in {duration_ms:.0f} ms (cache: {outcome.value})")
        return OperationResult(success=True, logs=log.entries, data=entry if entry is not None else fetched.items)

    # Session

    async def login(self) -> OperationResult:
        log = SyncLog("auth", clock=self._clock)
        try:
            await self.provider.authenticate()
        except Exception as exc:  # noqa: BLE001
            log.error(str(exc))
            return OperationResult(success=False, error=str(exc), logs=log.entries)
        log.success(f"Signed in as {self.provider.account_id or 'unknown'}")
        return OperationResult(success=True, logs=log.entries, data=self.session_store.retrieve())

    def auth_status(self) -> OperationResult:
        session = self.session_store.retrieve()
        return OperationResult(success=session is not None, data=session)

    def logout(self) -> OperationResult:
        self.session_store.invalidate()
        self.cache.clear()
        return OperationResult(success=True)
