"""User-facing operation log.

Sync, export and migration runs report progress as a list of timestamped,
leveled lines that the host renders. Each line is mirrored to structlog.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from mail_archive_sync.models import LogEntry, LogLevel

logger = structlog.get_logger()

LogListener = Callable[[LogEntry], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncLog:
    """Collects LogEntry lines and forwards them to an optional listener."""

    def __init__(
        self,
        operation: str,
        listener: LogListener | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._operation = operation
        self._listener = listener
        self._clock = clock
        self.entries: list[LogEntry] = []

    def add(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = LogEntry(timestamp=self._clock(), level=level, message=message)
        self.entries.append(entry)

        log_method = {
            LogLevel.WARNING: logger.warning,
            LogLevel.ERROR: logger.error,
        }.get(level, logger.info)
        log_method("sync_log", operation=self._operation, level=level.value, message=message)

        if self._listener is not None:
            self._listener(entry)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.INFO)

    def success(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.ERROR)
