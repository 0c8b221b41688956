"""Full message documents, one file per message.

Layout under the partition directory::

    full/YYYY/MM/DD/<message id>.json

The day is the UTC day of the message. Month partitions refer to these files
through each item's ``fullDataPath``; ignored messages have no full document.
"""

from __future__ import annotations

import asyncio
import json
from datetime import date
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError

from mail_archive_sync.exceptions import PartitionReadError, PartitionWriteError, ValidationError
from mail_archive_sync.models import FullMessage

logger = structlog.get_logger()

FULL_DATA_DIR = "full"


def full_data_relative_path(message_id: str, day: date) -> str:
    """Path of a full message document, relative to the partition directory."""

    return f"{FULL_DATA_DIR}/{day.year:04d}/{day.month:02d}/{day.day:02d}/{message_id}.json"


def _check_message_id(message_id: str) -> None:
    if not message_id or message_id.startswith(".") or any(c in message_id for c in "/\\"):
        raise ValidationError(f"Invalid message id '{message_id}'")


class FullMessageStore:
    """Reads and writes full message documents below ``<base_dir>/full``."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def root(self) -> Path:
        return self._base_dir / FULL_DATA_DIR

    def path_for(self, message_id: str, day: date) -> Path:
        _check_message_id(message_id)
        return self._base_dir / full_data_relative_path(message_id, day)

    async def save(self, message: FullMessage, day: date) -> str:
        """Write ``message``; returns its path relative to the partition directory.

        Raises:
            PartitionWriteError: If the file cannot be written.
        """

        path = self.path_for(message.id, day)
        try:
            await asyncio.to_thread(self._write, path, message)
        except OSError as exc:
            logger.exception("full_message_write_failed", message_id=message.id, error=str(exc))
            raise PartitionWriteError(f"Failed to store full data for {message.id}: {exc}") from exc
        logger.debug("full_message_saved", message_id=message.id, day=day.isoformat())
        return full_data_relative_path(message.id, day)

    async def load(self, message_id: str, day: date) -> FullMessage | None:
        path = self.path_for(message_id, day)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            logger.debug("full_message_not_found", message_id=message_id)
            return None
        except UnicodeDecodeError as exc:
            raise ValidationError(f"{path.name} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise PartitionReadError(f"Failed to read {path.name}: {exc}") from exc

        try:
            return FullMessage.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise ValidationError(f"Full data for {message_id} is malformed: {exc}") from exc

    async def exists(self, message_id: str, day: date) -> bool:
        return await asyncio.to_thread(self.path_for(message_id, day).is_file)

    async def delete(self, message_id: str, day: date) -> bool:
        """Remove a full message document. Returns False if there was none."""

        path = self.path_for(message_id, day)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.info("full_message_deleted", message_id=message_id, day=day.isoformat())
        return True

    async def list_files(self) -> list[str]:
        """Every full message document, relative to the partition directory."""

        return await asyncio.to_thread(self._list_files)

    def _list_files(self) -> list[str]:
        if not self.root.is_dir():
            return []
        # Only the YYYY/MM/DD level holds documents.
        return sorted(
            path.relative_to(self._base_dir).as_posix()
            for path in self.root.glob("*/*/*/*.json")
            if path.is_file()
        )

    def _write(self, path: Path, message: FullMessage) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(message.to_document(), f, indent=2, ensure_ascii=False)
