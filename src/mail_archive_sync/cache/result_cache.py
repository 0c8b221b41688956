"""Local cache of the last fetched result set.

The cache keeps a size-reduced copy of the messages. Under storage pressure
it degrades in steps instead of failing:

1. standard: every item, 200-char snippet, From/Subject/Date headers;
2. reduced (serialized size above ``cache_max_bytes``): first 50 items,
   100-char snippet, first three headers;
3. minimal (the store rejected the write as over quota): existing entry is
   dropped, first 20 items, 50-char snippet, From/Subject only.

Staleness is checked on read; nothing expires in the background.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog
from pydantic import ValidationError as PydanticValidationError

from mail_archive_sync.exceptions import StorageQuotaExceededError
from mail_archive_sync.models import CachedItem, CacheEntry, MailItem
from mail_archive_sync.storage.local import LocalStore, StorageUsage

logger = structlog.get_logger()

CACHE_VERSION = "1.1"
MINIMAL_CACHE_VERSION = "1.1-minimal"

_ESSENTIAL_HEADERS = ("From", "Subject", "Date")
_MINIMAL_HEADERS = ("From", "Subject")


class SaveOutcome(str, Enum):
    """Result of ResultCache.save."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultCache:
    """Size-bounded, age-limited cache backed by a LocalStore document."""

    def __init__(
        self,
        store: LocalStore,
        *,
        key: str = "gmail-client-cache",
        max_bytes: int = 5 * 1024 * 1024,
        ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._key = key
        self._max_bytes = max_bytes
        self._ttl = ttl
        self._clock = clock
        self.storage_usage: StorageUsage | None = None

    def save(self, items: list[MailItem], fetch_duration_ms: float) -> SaveOutcome:
        """Persist a reduced copy of ``items``.

        Returns:
            OK when the standard entry was stored, DEGRADED when a reduced or
            minimal entry was stored, FAILED when nothing could be stored.
        """

        entry = CacheEntry(
            emails=[
                CachedItem(
                    id=item.id,
                    snippet=item.snippet[:200],
                    headers=[h for h in item.all_headers() if h.name in _ESSENTIAL_HEADERS],
                )
                for item in items
            ],
            fetch_time=fetch_duration_ms,
            timestamp=self._clock(),
            version=CACHE_VERSION,
            count=len(items),
        )
        serialized = self._serialize(entry)
        size = len(serialized.encode("utf-8"))
        logger.info("cache_save_attempt", items=len(items), size_bytes=size)

        degraded = False
        if size > self._max_bytes:
            logger.warning("cache_entry_too_large", size_bytes=size, max_bytes=self._max_bytes)
            entry = CacheEntry(
                emails=[
                    CachedItem(id=item.id, snippet=item.snippet[:100], headers=item.all_headers()[:3])
                    for item in items[:50]
                ],
                fetch_time=fetch_duration_ms,
                timestamp=entry.timestamp,
                version=CACHE_VERSION,
                count=len(items),
                note="Reduced dataset due to size constraints",
                degraded=True,
            )
            serialized = self._serialize(entry)
            degraded = True

        try:
            self._store.set(self._key, serialized)
        except StorageQuotaExceededError as exc:
            logger.warning("cache_quota_exceeded", error=str(exc))
            return self._save_minimal(items, fetch_duration_ms)
        finally:
            self._refresh_usage()

        logger.info("cache_saved", items=len(entry.emails), degraded=degraded)
        return SaveOutcome.DEGRADED if degraded else SaveOutcome.OK

    def load(self) -> CacheEntry | None:
        """Return the cached entry if it is younger than the TTL.

        Expired or unreadable entries are purged.
        """

        raw = self._store.get(self._key)
        self._refresh_usage()
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("cache_entry_unreadable", error=str(exc))
            self.clear()
            return None

        captured = entry.timestamp
        if captured.tzinfo is None:
            captured = captured.replace(tzinfo=timezone.utc)
        age = self._clock() - captured
        if age >= self._ttl:
            logger.info("cache_expired", age_minutes=round(age.total_seconds() / 60, 1))
            self.clear()
            return None

        logger.info(
            "cache_loaded",
            items=len(entry.emails),
            age_minutes=round(age.total_seconds() / 60, 1),
        )
        return entry

    def clear(self) -> None:
        self._store.remove(self._key)
        self._refresh_usage()
        logger.info("cache_cleared")

    def _save_minimal(self, items: list[MailItem], fetch_duration_ms: float) -> SaveOutcome:
        self._store.remove(self._key)
        entry = CacheEntry(
            emails=[
                CachedItem(
                    id=item.id,
                    snippet=item.snippet[:50],
                    headers=[h for h in item.all_headers() if h.name in _MINIMAL_HEADERS][:2],
                )
                for item in items[:20]
            ],
            fetch_time=fetch_duration_ms,
            timestamp=self._clock(),
            version=MINIMAL_CACHE_VERSION,
            count=len(items),
            note="Minimal cache due to storage constraints",
            degraded=True,
        )
        try:
            self._store.set(self._key, self._serialize(entry))
        except StorageQuotaExceededError as exc:
            logger.error("cache_save_failed", error=str(exc))
            return SaveOutcome.FAILED
        finally:
            self._refresh_usage()

        logger.info("cache_saved_minimal", items=len(entry.emails))
        return SaveOutcome.DEGRADED

    def _serialize(self, entry: CacheEntry) -> str:
        return entry.model_dump_json(by_alias=True, exclude_none=True)

    def _refresh_usage(self) -> None:
        # Display-only estimate; a failure here must not affect the cache.
        try:
            self.storage_usage = self._store.usage()
        except Exception as exc:  # noqa: BLE001
            logger.debug("storage_usage_unavailable", error=str(exc))
            self.storage_usage = None
