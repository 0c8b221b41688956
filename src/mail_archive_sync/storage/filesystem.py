"""Filesystem partition store.

Directory layout::

    <partition_dir>/
    ├── gmail-export-YYYY-MM.json                   (month partitions)
    ├── gmail-export-YYYY-MM-DD-to-YYYY-MM-DD.json  (legacy range exports)
    ├── full/YYYY/MM/DD/<id>.json                  (full messages, see full_data)
    └── backup/backup-<timestamp>/                  (legacy copies made by migration)

File IO is blocking and runs in worker threads via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from mail_archive_sync.exceptions import PartitionReadError, PartitionWriteError, ValidationError
from mail_archive_sync.models import MailItem, Partition
from mail_archive_sync.storage.base import PartitionStore, is_legacy_key
from mail_archive_sync.sync.partitioning import is_month_key

logger = structlog.get_logger()

FILE_PREFIX = "gmail-export"
_MONTH_FILE_RE = re.compile(r"^gmail-export-(\d{4}-\d{2})\.json$")


def partition_filename(month: str) -> str:
    return f"{FILE_PREFIX}-{month}.json"


class FilePartitionStore(PartitionStore):
    """Stores one JSON document per month in a directory."""

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def list_months(self) -> list[str]:
        names = await asyncio.to_thread(self._list_names)
        months = []
        for name in names:
            match = _MONTH_FILE_RE.match(name)
            if match and is_month_key(match.group(1)):
                months.append(match.group(1))
        return sorted(months)

    async def list_legacy(self) -> list[str]:
        names = await asyncio.to_thread(self._list_names)
        return sorted(name[: -len(".json")] for name in names if is_legacy_key(name))

    async def read(self, month: str) -> Partition | None:
        self._check_month(month)
        path = self._directory / partition_filename(month)
        document = await asyncio.to_thread(self._load_json, path)
        if document is None:
            return None
        try:
            return Partition.model_validate(document)
        except PydanticValidationError as exc:
            raise ValidationError(f"Partition {month} is malformed: {exc}") from exc

    async def write(self, month: str, partition: Partition) -> None:
        self._check_month(month)
        path = self._directory / partition_filename(month)
        try:
            await asyncio.to_thread(self._dump_json, path, partition.to_document())
        except OSError as exc:
            logger.exception("partition_write_failed", month=month, error=str(exc))
            raise PartitionWriteError(f"Failed to write {path.name}: {exc}") from exc
        logger.info("partition_written", month=month, total_emails=partition.total_emails)

    async def read_legacy(self, key: str) -> list[MailItem]:
        path = self._directory / f"{key}.json"
        document = await asyncio.to_thread(self._load_json, path)
        if document is None:
            raise ValidationError(f"Legacy document not found: {path.name}")

        raw_items = document.get("emails") if isinstance(document, dict) else None
        if not isinstance(raw_items, list):
            return []

        items: list[MailItem] = []
        for raw in raw_items:
            try:
                items.append(MailItem.model_validate(raw))
            except PydanticValidationError as exc:
                logger.warning("legacy_item_skipped", key=key, error=str(exc))
        return items

    async def backup_legacy(self, keys: list[str]) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        backup_dir = self._directory / "backup" / f"backup-{timestamp}"
        await asyncio.to_thread(self._copy_files, [self._directory / f"{k}.json" for k in keys], backup_dir)
        logger.info("legacy_backup_created", backup_dir=str(backup_dir), files=len(keys))
        return str(backup_dir)

    async def remove_legacy(self, key: str) -> None:
        path = self._directory / f"{key}.json"
        await asyncio.to_thread(path.unlink)
        logger.info("legacy_document_removed", key=key)

    def _check_month(self, month: str) -> None:
        if not is_month_key(month):
            raise ValidationError(f"Invalid month key '{month}'. Expected: YYYY-MM")

    def _list_names(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return [
            entry.name
            for entry in self._directory.iterdir()
            if entry.is_file() and entry.name.startswith(FILE_PREFIX) and entry.name.endswith(".json")
        ]

    def _load_json(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError(f"{path.name} is not valid JSON: {exc}") from exc
        except OSError as exc:
            logger.exception("document_read_failed", path=str(path), error=str(exc))
            raise PartitionReadError(f"Failed to read {path.name}: {exc}") from exc

    def _dump_json(self, path: Path, document: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file, then atomically swap it in.
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _copy_files(self, paths: list[Path], destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        for path in paths:
            shutil.copy2(path, destination / path.name)
