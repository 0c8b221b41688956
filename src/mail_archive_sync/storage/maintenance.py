"""Disk usage statistics and cleanup of orphaned full message documents."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from mail_archive_sync.exceptions import MailSyncError
from mail_archive_sync.models import CleanupError, CleanupResult, StorageStats
from mail_archive_sync.storage.base import PartitionStore
from mail_archive_sync.storage.full_data import FullMessageStore

logger = structlog.get_logger()

INDEX_FILE_PREFIX = "gmail-export-"


def _walk(directory: Path) -> tuple[int, int]:
    """Return (bytes of all files, number of .json files) below ``directory``."""

    size = 0
    count = 0
    if not directory.is_dir():
        return 0, 0
    for path in directory.rglob("*"):
        if not path.is_file():
            continue
        size += path.stat().st_size
        if path.suffix == ".json":
            count += 1
    return size, count


class StorageMaintenance:
    """Reports on the partition directory and removes unreferenced full data."""

    def __init__(self, store: PartitionStore, full_store: FullMessageStore) -> None:
        self._store = store
        self._full_store = full_store

    async def stats(self) -> StorageStats:
        base = self._full_store.base_dir
        total_size, total_files = await asyncio.to_thread(_walk, base)
        full_size, full_files = await asyncio.to_thread(_walk, self._full_store.root)
        index_files = await asyncio.to_thread(self._count_index_files, base)
        by_year = await asyncio.to_thread(self._by_year)
        orphaned = await self.find_orphans()

        stats = StorageStats(
            total_size=total_size,
            full_data_size=full_size,
            index_size=total_size - full_size,
            total_files=total_files,
            full_data_files=full_files,
            index_file_count=index_files,
            by_year=by_year,
            orphaned_files=orphaned,
        )
        logger.info(
            "storage_stats_computed",
            total_size=stats.total_size,
            full_data_files=stats.full_data_files,
            orphaned=len(orphaned),
        )
        return stats

    async def find_orphans(self) -> list[str]:
        """Full data files whose message is not in any stored document.

        Files dated in a month whose partition could not be read are never
        reported, since their references are unknown.
        """

        indexed: set[str] = set()
        unreadable_months: set[str] = set()

        for month in await self._store.list_months():
            try:
                partition = await self._store.read(month)
            except MailSyncError as exc:
                logger.warning("orphan_scan_partition_skipped", month=month, error=str(exc))
                unreadable_months.add(month)
                continue
            if partition is not None:
                indexed.update(item.id for item in partition.emails)

        for key in await self._store.list_legacy():
            try:
                indexed.update(item.id for item in await self._store.read_legacy(key))
            except MailSyncError as exc:
                logger.warning("orphan_scan_legacy_skipped", key=key, error=str(exc))
                # A legacy document can hold any month.
                return []

        orphaned: list[str] = []
        for relative in await self._full_store.list_files():
            # full/YYYY/MM/DD/<id>.json
            parts = relative.split("/")
            month = f"{parts[1]}-{parts[2]}"
            message_id = parts[-1][: -len(".json")]
            if month in unreadable_months:
                continue
            if message_id not in indexed:
                orphaned.append(relative)
        return orphaned

    async def delete_files(self, files: list[str]) -> CleanupResult:
        """Delete full data files given relative to the partition directory.

        Paths that resolve outside the full data directory are rejected.
        """

        result = CleanupResult()
        root = self._full_store.root.resolve()
        for relative in files:
            candidate = (self._full_store.base_dir / relative).resolve()
            if not candidate.is_relative_to(root) or candidate.suffix != ".json":
                logger.warning("cleanup_path_rejected", file=relative)
                result.errors.append(CleanupError(file=relative, error="Invalid file path"))
                continue
            try:
                await asyncio.to_thread(candidate.unlink)
            except OSError as exc:
                result.errors.append(CleanupError(file=relative, error=str(exc)))
                continue
            result.deleted.append(relative)

        logger.info("cleanup_finished", deleted=len(result.deleted), errors=len(result.errors))
        return result

    def _count_index_files(self, base: Path) -> int:
        if not base.is_dir():
            return 0
        return sum(
            1
            for path in base.iterdir()
            if path.is_file() and path.name.startswith(INDEX_FILE_PREFIX) and path.suffix == ".json"
        )

    def _by_year(self) -> dict[str, dict[str, int]]:
        root = self._full_store.root
        if not root.is_dir():
            return {}
        result: dict[str, dict[str, int]] = {}
        for year_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            files = [p for p in year_dir.glob("*/*/*.json") if p.is_file()]
            result[year_dir.name] = {
                "files": len(files),
                "size": sum(p.stat().st_size for p in files),
            }
        return result
