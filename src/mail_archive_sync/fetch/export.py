"""Bulk export of a date range, one week at a time.

Each week is listed and fetched on its own so that a failing week (query
error, transient remote error) is skipped rather than aborting the export.
The exporter persists nothing; serializing the result is the caller's job.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

import structlog

from mail_archive_sync.exceptions import AuthenticationError, ConfigurationError
from mail_archive_sync.fetch.batch import BatchFetcher
from mail_archive_sync.fetch.ranges import range_query, weeks
from mail_archive_sync.models import ExportProgress, ExportResult, MailItem, WeekSummary
from mail_archive_sync.provider import MailProvider
from mail_archive_sync.utils import Sleep

logger = structlog.get_logger()

ProgressCallback = Callable[[ExportProgress], Awaitable[Any] | None]


class WeeklyExporter:
    """Exports all messages of a date range in weekly batches."""

    def __init__(
        self,
        provider: MailProvider,
        fetcher: BatchFetcher | None = None,
        *,
        batch_size: int = 8,
        batch_delay_ms: int = 150,
        week_delay_ms: int = 300,
        week_failure_delay_ms: int = 500,
        max_results_per_week: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._fetcher = fetcher or BatchFetcher(provider, sleep=sleep)
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._week_delay_ms = week_delay_ms
        self._week_failure_delay_ms = week_failure_delay_ms
        self._max_results_per_week = max_results_per_week
        self._sleep = sleep

    async def export(
        self,
        start: date,
        end: date,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Fetch every message dated within ``[start, end]``.

        Args:
            start: First day (inclusive).
            end: Last day (inclusive).
            on_progress: Receives a fresh ExportProgress snapshot on every step.

        Returns:
            ExportResult with all fetched messages and a per-week breakdown.

        Raises:
            InvalidDateRangeError: If start is after end.
            AuthenticationError: If the provider rejects the credential.
        """

        windows = weeks(start, end)
        progress = ExportProgress(total_weeks=len(windows), current_step="Initializing...")
        await self._emit(on_progress, progress)

        emails: list[MailItem] = []
        breakdown: list[WeekSummary] = []

        logger.info("export_started", start=start.isoformat(), end=end.isoformat(), weeks=len(windows))

        for index, window in enumerate(windows):
            query = range_query(window.start, window.end)
            summary = WeekSummary(label=window.label, start=window.start, end=window.end, query=query)
            progress.current_week = window.label
            progress.week_progress = 0
            progress.current_step = f"Searching for emails in {window.label}..."
            await self._emit(on_progress, progress)

            try:
                ids = await self._provider.list_message_ids(query, max_results=self._max_results_per_week)
                summary.found = len(ids)
                progress.total_emails += len(ids)
                progress.current_step = f"Found {len(ids)} emails. Fetching details..."
                await self._emit(on_progress, progress)

                async def report_batch(batch: int, total_batches: int, fetched: int) -> None:
                    progress.week_progress = round(batch / total_batches * 100)
                    progress.processed_emails = len(emails) + fetched
                    progress.current_step = f"Processing batch {batch}/{total_batches}"
                    await self._emit(on_progress, progress)

                fetched = await self._fetcher.fetch_all(
                    ids,
                    batch_size=self._batch_size,
                    inter_batch_delay_ms=self._batch_delay_ms,
                    on_batch=report_batch,
                )
            except (AuthenticationError, ConfigurationError):
                raise
            except Exception as exc:  # noqa: BLE001
                summary.failed = True
                summary.error = str(exc)
                breakdown.append(summary)
                progress.failed_weeks += 1
                progress.completed_weeks += 1
                progress.current_step = f"Week {window.label} failed: {exc}"
                logger.error("export_week_failed", week=window.label, query=query, error=str(exc))
                await self._emit(on_progress, progress)
                if index < len(windows) - 1:
                    await self._sleep(self._week_failure_delay_ms / 1000)
                continue

            summary.fetched = len(fetched.items)
            summary.failed_fetches = len(fetched.failures)
            emails.extend(fetched.items)
            breakdown.append(summary)

            progress.week_progress = 100
            progress.completed_weeks += 1
            progress.processed_emails = len(emails)
            progress.current_step = f"Completed {window.label} ({summary.fetched} emails)"
            logger.info(
                "export_week_completed",
                week=window.label,
                found=summary.found,
                fetched=summary.fetched,
                failed_fetches=summary.failed_fetches,
            )
            await self._emit(on_progress, progress)

            if index < len(windows) - 1:
                await self._sleep(self._week_delay_ms / 1000)

        progress.current_step = "Complete!"
        await self._emit(on_progress, progress)
        logger.info(
            "export_completed",
            total_emails=len(emails),
            failed_weeks=progress.failed_weeks,
        )

        return ExportResult(
            start=windows[0].start,
            end=windows[-1].end,
            emails=emails,
            weekly_breakdown=breakdown,
            total_emails=len(emails),
        )

    async def _emit(self, callback: ProgressCallback | None, progress: ExportProgress) -> None:
        if callback is None:
            return
        maybe = callback(progress.model_copy())
        if asyncio.iscoroutine(maybe):
            await maybe
