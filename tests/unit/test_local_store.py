"""Unit tests for LocalStore."""

import sqlite3
from pathlib import Path

import pytest

from mail_archive_sync.exceptions import StorageQuotaExceededError
from mail_archive_sync.storage.local import LocalStore


def test_initialize_creates_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "local.sqlite3"
    store = LocalStore(db_path, quota_bytes=1024)

    store.initialize()

    with sqlite3.connect(db_path) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        version = conn.execute("SELECT value FROM _schema_meta WHERE key='schema_version'").fetchone()[0]

    assert {"_schema_meta", "local_documents"} <= tables
    assert version == "1"


def test_set_get_remove(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "local.sqlite3", quota_bytes=1024)

    store.set("k", '{"a": 1}')
    assert store.get("k") == '{"a": 1}'

    store.set("k", '{"a": 2}')
    assert store.get("k") == '{"a": 2}'

    store.remove("k")
    assert store.get("k") is None


def test_values_persist_across_instances(tmp_path: Path) -> None:
    db_path = tmp_path / "local.sqlite3"
    LocalStore(db_path, quota_bytes=1024).set("k", "v")

    assert LocalStore(db_path, quota_bytes=1024).get("k") == "v"


def test_quota_counts_other_documents(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "local.sqlite3", quota_bytes=100)
    store.set("a", "x" * 60)

    with pytest.raises(StorageQuotaExceededError):
        store.set("b", "y" * 50)

    # Replacing a document only counts its new size.
    store.set("a", "z" * 100)
    assert store.get("b") is None


def test_usage(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "local.sqlite3", quota_bytes=200)
    store.set("a", "x" * 50)

    usage = store.usage()

    assert usage.used_bytes == 50
    assert usage.quota_bytes == 200
    assert usage.used_fraction == pytest.approx(0.25)
