"""Paced, batched retrieval of full messages.

Ids are split into consecutive chunks. The messages of one chunk are fetched
concurrently; chunks run strictly one after another with a pause in between
to stay under the provider's rate limit. A message that fails to fetch is
logged and reported as a FetchFailure; it never fails its chunk.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from mail_archive_sync.exceptions import AuthenticationError, ConfigurationError
from mail_archive_sync.models import FetchFailure, MailItem
from mail_archive_sync.provider import MailProvider
from mail_archive_sync.utils import Sleep, retry_on_failure

logger = structlog.get_logger()

FetchOutcome = MailItem | FetchFailure

# (batch_number, total_batches, fetched_so_far)
BatchCallback = Callable[[int, int, int], Awaitable[Any] | None]


@dataclass
class BatchFetchResult:
    """One outcome per requested id, in request order."""

    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def items(self) -> list[MailItem]:
        return [o for o in self.outcomes if isinstance(o, MailItem)]

    @property
    def failures(self) -> list[FetchFailure]:
        return [o for o in self.outcomes if isinstance(o, FetchFailure)]


class BatchFetcher:
    """Fetches full messages for a list of ids in paced batches."""

    def __init__(
        self,
        provider: MailProvider,
        *,
        retries: int = 0,
        retry_delay: float = 1.0,
        retry_backoff: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Create a fetcher.

        Args:
            provider: Source of full messages.
            retries: Extra attempts for a transient per-message failure.
            retry_delay: Initial retry delay in seconds.
            retry_backoff: Multiplier applied to the delay after each retry.
            sleep: Awaitable sleep, replaceable in tests.
        """

        self._provider = provider
        self._sleep = sleep
        self._get_message = retry_on_failure(
            max_retries=retries,
            delay=retry_delay,
            backoff=retry_backoff,
            no_retry=(AuthenticationError, ConfigurationError),
            sleep=sleep,
        )(provider.get_message)

    async def fetch_all(
        self,
        ids: list[str],
        batch_size: int,
        inter_batch_delay_ms: int,
        on_batch: BatchCallback | None = None,
    ) -> BatchFetchResult:
        """Fetch every id.

        Args:
            ids: Message ids to fetch.
            batch_size: Messages fetched concurrently per batch.
            inter_batch_delay_ms: Pause between batches, not after the last.
            on_batch: Called after each batch with (batch number, total
                batches, messages fetched so far).

        Returns:
            BatchFetchResult with exactly one outcome per id.

        Raises:
            AuthenticationError: If the provider rejects the credential.
        """

        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        result = BatchFetchResult()
        total_batches = (len(ids) + batch_size - 1) // batch_size
        fetched = 0

        for batch_index, offset in enumerate(range(0, len(ids), batch_size)):
            batch = ids[offset : offset + batch_size]
            outcomes = await asyncio.gather(*(self._fetch_one(message_id) for message_id in batch))

            auth_failure = next((o for o in outcomes if isinstance(o, BaseException)), None)
            if auth_failure is not None:
                raise auth_failure

            result.outcomes.extend(outcomes)  # type: ignore[arg-type]
            fetched += sum(1 for o in outcomes if isinstance(o, MailItem))
            logger.info(
                "batch_fetched",
                batch=batch_index + 1,
                total_batches=total_batches,
                batch_size=len(batch),
                fetched=fetched,
            )

            if on_batch is not None:
                maybe = on_batch(batch_index + 1, total_batches, fetched)
                if asyncio.iscoroutine(maybe):
                    await maybe

            if offset + batch_size < len(ids):
                await self._sleep(inter_batch_delay_ms / 1000)

        return result

    async def _fetch_one(self, message_id: str) -> FetchOutcome | BaseException:
        try:
            return await self._get_message(message_id)
        except (AuthenticationError, ConfigurationError) as exc:
            # Fatal for the whole operation; surfaced once the batch is joined.
            return exc
        except Exception as exc:  # noqa: BLE001
            logger.warning("message_fetch_failed", message_id=message_id, error=str(exc))
            return FetchFailure(message_id=message_id, error=str(exc))
