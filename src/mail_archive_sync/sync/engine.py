"""Incremental sync ("Smart Fetch").

One run scans the partition store for the newest stored message, fetches
only what arrived after it, buckets the new messages by month and merges
each bucket into its month partition, skipping ids that are already stored.

New messages that are not ignored also get a full message document (see
storage.full_data) when the engine is given a FullMessageStore.

States: IDLE -> SCANNING -> FETCHING -> GROUPING -> MERGING -> IDLE, or
IDLE -> FAILED -> IDLE when the credential is missing or rejected. A failed
run never writes a partition: every merge happens after fetching is done.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog

from mail_archive_sync.exceptions import AuthenticationError, ConfigurationError, MailSyncError
from mail_archive_sync.fetch.batch import BatchFetcher
from mail_archive_sync.fetch.ranges import range_query
from mail_archive_sync.gmail.parsing import item_to_full_message
from mail_archive_sync.models import LogLevel, MailItem, MonthMergeOutcome, SmartFetchResult
from mail_archive_sync.provider import MailProvider
from mail_archive_sync.storage.base import PartitionStore
from mail_archive_sync.storage.full_data import FullMessageStore
from mail_archive_sync.sync.log import LogListener, SyncLog
from mail_archive_sync.sync.partitioning import group_by_month, item_day, merge_partition
from mail_archive_sync.utils import Sleep

logger = structlog.get_logger()


class SyncState(str, Enum):
    """Phases of a Smart Fetch run."""

    IDLE = "idle"
    SCANNING = "scanning"
    FETCHING = "fetching"
    GROUPING = "grouping"
    MERGING = "merging"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IncrementalSyncEngine:
    """Fetches messages newer than the stored watermark and merges them by month."""

    def __init__(
        self,
        provider: MailProvider,
        store: PartitionStore,
        fetcher: BatchFetcher | None = None,
        *,
        batch_size: int = 10,
        batch_delay_ms: int = 200,
        lookback_days: int = 30,
        max_results: int | None = None,
        full_store: FullMessageStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._store = store
        self._fetcher = fetcher or BatchFetcher(provider, sleep=sleep)
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._lookback = timedelta(days=lookback_days)
        self._max_results = max_results
        self._full_store = full_store
        self._clock = clock
        self.state = SyncState.IDLE

    async def run(self, listener: LogListener | None = None) -> SmartFetchResult:
        """Run one Smart Fetch.

        Never raises: configuration and authentication problems are reported
        as ``success=False`` with an actionable ``error``.
        """

        log = SyncLog("smart_fetch", listener, clock=self._clock)
        result = SmartFetchResult()
        log.info("Starting Smart Fetching...")

        try:
            await self._run(log, result)
        except (ConfigurationError, AuthenticationError) as exc:
            self._transition(SyncState.FAILED, log)
            result.success = False
            result.error = str(exc)
            log.error(f"Smart Fetch aborted: {exc}")
        except MailSyncError as exc:
            # Listing or scanning failed; nothing has been merged yet.
            self._transition(SyncState.FAILED, log)
            result.success = False
            result.error = str(exc)
            log.error(f"Smart Fetch failed: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("smart_fetch_crashed", error=str(exc))
            self._transition(SyncState.FAILED, log)
            result.success = False
            result.error = str(exc)
            log.error(f"Smart Fetch failed: {exc}")
        finally:
            self._transition(SyncState.IDLE, log)
            result.logs = log.entries

        return result

    async def _run(self, log: SyncLog, result: SmartFetchResult) -> None:
        self._transition(SyncState.SCANNING, log)
        scan = await self._store.scan()
        now = self._clock()

        if scan.most_recent_item_timestamp is None:
            watermark = now - self._lookback
            log.info(f"No existing emails found, fetching last {self._lookback.days} days")
        else:
            watermark = scan.most_recent_item_timestamp
            log.info(f"Latest email: {watermark.date().isoformat()}")
        result.watermark = watermark

        self._transition(SyncState.FETCHING, log)
        await self._provider.authenticate()

        query = range_query(watermark, now)
        result.query = query
        log.info(f"Fetching emails from {watermark.date().isoformat()} to {now.date().isoformat()}")
        log.info("Querying Gmail API...")

        ids = await self._provider.list_message_ids(query, max_results=self._max_results)
        result.listed = len(ids)
        if not ids:
            log.success("No new emails found. You're up to date!")
            result.success = True
            result.scan = scan
            return
        log.info(f"Found {len(ids)} email(s)")

        def report_batch(batch: int, total_batches: int, fetched: int) -> None:
            log.info(f"Processing batch {batch}/{total_batches} ({fetched} fetched)")

        fetched = await self._fetcher.fetch_all(
            ids,
            batch_size=self._batch_size,
            inter_batch_delay_ms=self._batch_delay_ms,
            on_batch=report_batch,
        )
        result.fetched = len(fetched.items)
        result.failed_fetches = len(fetched.failures)
        if fetched.failures:
            log.warning(f"{len(fetched.failures)} email(s) could not be fetched and were skipped")
        log.success(f"Fetched {result.fetched} email(s)")

        self._transition(SyncState.GROUPING, log)
        log.info("Grouping emails by month...")
        grouped, undated = group_by_month(fetched.items)
        for item in undated:
            log.warning(f"Skipping email {item.id} (no valid date)")
        result.skipped_undated = len(undated)
        log.info(f"Grouped into {len(grouped)} month(s)")

        self._transition(SyncState.MERGING, log)
        fetched_by = self._provider.account_id or "unknown"
        for month in sorted(grouped):
            outcome = await self._merge_month(month, grouped[month], fetched_by, log)
            result.months.append(outcome)

        result.new_items = sum(m.new_items for m in result.months)
        result.duplicates = sum(m.duplicates for m in result.months)
        result.full_data_saved = sum(m.full_data_saved for m in result.months)
        failed_months = [m.month for m in result.months if not m.success]

        summary = (
            f"Smart Fetch complete: {result.new_items} new email(s), "
            f"{result.duplicates} duplicate(s) skipped across {len(result.months)} month(s)"
        )
        if failed_months:
            log.warning(f"{summary}; failed months: {', '.join(failed_months)}")
        else:
            log.success(summary)

        result.success = True
        result.scan = await self._store.scan()

    async def _merge_month(
        self,
        month: str,
        items: list[MailItem],
        fetched_by: str,
        log: SyncLog,
    ) -> MonthMergeOutcome:
        log.info(f"Updating {month}...")
        saved = 0
        try:
            async with self._store.lock(month):
                existing = await self._store.read(month)
                if self._full_store is not None:
                    known = {item.id for item in existing.emails} if existing is not None else set()
                    items, saved = await self._store_full_messages(self._full_store, items, known, log)
                partition, stats = merge_partition(
                    month,
                    existing,
                    items,
                    fetched_by=fetched_by,
                    now=self._clock(),
                )
                await self._store.write(month, partition)
        except MailSyncError as exc:
            log.error(f"Failed to update {month}: {exc}")
            return MonthMergeOutcome(month=month, error=str(exc))

        if stats.duplicates:
            log.info(f"Skipped {stats.duplicates} duplicate(s) in {month}")
        if saved:
            log.info(f"Stored full data for {saved} email(s) in {month}")
        action = "Created" if stats.created else "Updated"
        log.success(
            f"{action} {month} ({stats.new_items} new email(s), "
            f"{stats.duplicates} duplicate(s), {stats.total} total)"
        )
        return MonthMergeOutcome(
            month=month,
            new_items=stats.new_items,
            duplicates=stats.duplicates,
            total=stats.total,
            created=stats.created,
            full_data_saved=saved,
        )

    async def _store_full_messages(
        self,
        full_store: FullMessageStore,
        items: list[MailItem],
        known: set[str],
        log: SyncLog,
    ) -> tuple[list[MailItem], int]:
        """Write full documents for new, non-ignored items and point the items at them."""

        stored_at = self._clock()
        seen = set(known)
        updated: list[MailItem] = []
        saved = 0
        for item in items:
            day = item_day(item)
            if item.id in seen or item.ignored or day is None:
                updated.append(item)
                continue
            seen.add(item.id)

            full = item_to_full_message(item, stored_at=stored_at)
            try:
                path = await full_store.save(full, day)
            except MailSyncError as exc:
                log.warning(f"Could not store full data for {item.id}: {exc}")
                updated.append(item)
                continue

            attachments = full.attachments or []
            updated.append(
                item.model_copy(
                    update={
                        "full_data_path": path,
                        "has_attachments": bool(attachments),
                        "attachment_count": len(attachments),
                    }
                )
            )
            saved += 1
        return updated, saved

    def _transition(self, state: SyncState, log: SyncLog) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        logger.debug("smart_fetch_state_changed", previous=previous.value, state=state.value)
        level = LogLevel.ERROR if state is SyncState.FAILED else LogLevel.INFO
        log.add(f"State: {previous.value} -> {state.value}", level)
