"""SQLite-backed local document store with a storage quota.

Holds the small per-session documents (result cache, session credential).
Writes that would push the total stored size over the quota are rejected with
StorageQuotaExceededError, mirroring a browser-style storage limit.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from mail_archive_sync.exceptions import StorageQuotaExceededError

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class StorageUsage:
    """Estimate of the space used by the local store."""

    used_bytes: int
    quota_bytes: int

    @property
    def used_fraction(self) -> float:
        return 0.0 if self.quota_bytes <= 0 else self.used_bytes / self.quota_bytes


class LocalStore:
    """Key/value store for JSON documents."""

    def __init__(self, db_path: Path, quota_bytes: int) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
            quota_bytes: Maximum total size of all stored values.
        """

        self._db_path = db_path
        self._quota_bytes = quota_bytes
        self._initialized = False

    @property
    def quota_bytes(self) -> int:
        return self._quota_bytes

    def initialize(self) -> None:
        """Create or verify the store schema."""

        if self._initialized:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS local_documents (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        size_bytes INTEGER NOT NULL,
                        updated_at_iso TEXT NOT NULL
                    );
                    """
                )
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("local_store_schema_created", version=_SCHEMA_VERSION)
            elif current_version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

        self._initialized = True

    def get(self, key: str) -> str | None:
        self.initialize()
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM local_documents WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            StorageQuotaExceededError: If the write would exceed the quota.
        """

        self.initialize()
        size = len(value.encode("utf-8"))

        with self._connect() as conn:
            (others,) = conn.execute(
                "SELECT COALESCE(SUM(size_bytes), 0) FROM local_documents WHERE key != ?",
                (key,),
            ).fetchone()
            if int(others) + size > self._quota_bytes:
                logger.warning(
                    "local_store_quota_exceeded",
                    key=key,
                    size_bytes=size,
                    used_bytes=int(others),
                    quota_bytes=self._quota_bytes,
                )
                raise StorageQuotaExceededError(
                    f"Writing {size} bytes to '{key}' exceeds the local storage quota "
                    f"({int(others)} of {self._quota_bytes} bytes already used)"
                )

            conn.execute(
                """
                INSERT INTO local_documents (key, value, size_bytes, updated_at_iso)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    size_bytes=excluded.size_bytes,
                    updated_at_iso=excluded.updated_at_iso
                """,
                (key, value, size, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        self.initialize()
        with self._connect() as conn:
            conn.execute("DELETE FROM local_documents WHERE key = ?", (key,))
            conn.commit()

    def usage(self) -> StorageUsage:
        """Estimate the space currently used."""

        self.initialize()
        with self._connect() as conn:
            (used,) = conn.execute("SELECT COALESCE(SUM(size_bytes), 0) FROM local_documents").fetchone()
        return StorageUsage(used_bytes=int(used), quota_bytes=self._quota_bytes)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )
