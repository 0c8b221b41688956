"""Unit tests for the host-facing SyncService."""

import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from mail_archive_sync.exceptions import AuthenticationError
from mail_archive_sync.models import CacheEntry, ExportResult, FullMessage, Partition, SmartFetchResult
from mail_archive_sync.service import SyncService, export_document, export_filename
from mail_archive_sync.storage import FilePartitionStore
from mail_archive_sync.sync.partitioning import month_date_range


@pytest.fixture
def jan_provider(provider_factory, item_factory):
    return provider_factory(
        [
            item_factory("a", "2024-01-02T10:00:00Z"),
            item_factory("b", "2024-01-09T10:00:00Z"),
        ]
    )


@pytest.fixture
def service(mock_settings, jan_provider, clock, recording_sleep) -> SyncService:
    return SyncService(mock_settings, provider=jan_provider, clock=clock, sleep=recording_sleep)


class TestSyncService:
    """Test suite for SyncService."""

    def test_defaults_are_built_from_settings(self, mock_settings) -> None:
        service = SyncService(mock_settings)

        assert isinstance(service.store, FilePartitionStore)
        assert service.store.directory == mock_settings.partition_dir

    @pytest.mark.asyncio
    async def test_scan_and_read(self, service, item_factory) -> None:
        partition = Partition(
            date_range=month_date_range("2024-01"),
            total_emails=1,
            emails=[item_factory("a", "2024-01-02T10:00:00Z")],
            export_date="2024-01-03T00:00:00Z",
        )
        written = await service.write("2024-01", partition)

        scanned = await service.scan()
        read = await service.read("2024-01")
        missing = await service.read("2023-12")

        assert written.success is True
        assert scanned.data.partition_count == 1
        assert read.data.emails[0].id == "a"
        assert missing.success is True
        assert missing.data is None

    @pytest.mark.asyncio
    async def test_read_invalid_month_reports_error(self, service) -> None:
        result = await service.read("January")

        assert result.success is False
        assert "Invalid month key" in result.error
        assert result.logs

    @pytest.mark.asyncio
    async def test_smart_fetch_refused_until_migrated(self, service, mock_settings) -> None:
        legacy = Path(mock_settings.partition_dir) / "gmail-export-2024-01-01-to-2024-01-31.json"
        legacy.parent.mkdir(parents=True)
        legacy.write_text(json.dumps({"emails": [{"id": "a", "date": "2024-01-02T10:00:00Z"}]}), encoding="utf-8")

        refused = await service.smart_fetch()
        migrated = await service.migrate()
        fetched = await service.smart_fetch()

        assert refused.success is False
        assert "migration" in refused.error
        assert service.provider.queries[-1:] == ["after:2024/01/02 before:2024/03/16"]
        assert migrated.success is True
        assert fetched.success is True
        assert isinstance(fetched.data, SmartFetchResult)
        assert fetched.data.new_items == 1
        assert fetched.data.duplicates == 1

    @pytest.mark.asyncio
    async def test_smart_fetch_reports_auth_failure(self, service, jan_provider) -> None:
        jan_provider.auth_error = AuthenticationError("Token expired. Please sign in again.")

        result = await service.smart_fetch()

        assert result.success is False
        assert result.error == "Token expired. Please sign in again."

    @pytest.mark.asyncio
    async def test_export_range_writes_flat_document(self, service, tmp_path) -> None:
        out_dir = tmp_path / "exports"
        out_dir.mkdir()

        result = await service.export_range(date(2024, 1, 1), date(2024, 1, 16), output=out_dir)

        assert result.success is True
        path = out_dir / "gmail-export-2024-01-01-to-2024-01-16.json"
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["dateRange"] == {"start": "2024-01-01", "end": "2024-01-16"}
        assert document["fetchedBy"] == "me@example.com"
        assert len(document["weeklyBreakdown"]) == 3
        assert any(entry.message.startswith("Export complete") for entry in result.logs)

    @pytest.mark.asyncio
    async def test_export_range_invalid_dates(self, service) -> None:
        result = await service.export_range(date(2024, 1, 2), date(2024, 1, 1))

        assert result.success is False
        assert "after end date" in result.error

    @pytest.mark.asyncio
    async def test_recent_is_served_from_cache(self, service, jan_provider) -> None:
        first = await service.recent(limit=10)
        requested = list(jan_provider.requested)
        second = await service.recent(limit=10)

        assert first.success is True
        assert isinstance(second.data, CacheEntry)
        assert [item.id for item in second.data.emails] == ["a", "b"]
        assert jan_provider.requested == requested

    def test_logout_clears_session_and_cache(self, service) -> None:
        service.cache.save([], fetch_duration_ms=1)

        result = service.logout()

        assert result.success is True
        assert service.cache.load() is None
        assert service.auth_status().success is False

    @pytest.mark.asyncio
    async def test_recent_reports_local_store_failure(self, mock_settings, jan_provider, clock) -> None:
        db_path = Path(mock_settings.local_store_path)
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE _schema_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO _schema_meta(key, value) VALUES('schema_version', '9')")
        conn.commit()
        conn.close()
        service = SyncService(mock_settings, provider=jan_provider, clock=clock)

        result = await service.recent()

        assert result.success is False
        assert "Unsupported schema version" in result.error
        assert result.logs[-1].message.startswith("Fetching recent emails failed")
        assert jan_provider.requested == []

    @pytest.mark.asyncio
    async def test_set_ignored_toggles_flag_and_full_data(self, service, item_factory, clock) -> None:
        day = date(2024, 1, 2)
        path = await service.full_store.save(
            FullMessage(id="a", stored_date="2024-01-03T00:00:00Z"), day
        )
        await service.write(
            "2024-01",
            Partition(
                date_range=month_date_range("2024-01"),
                total_emails=2,
                emails=[
                    item_factory("a", "2024-01-02T10:00:00Z", full_data_path=path),
                    item_factory("b", "2024-01-09T10:00:00Z"),
                ],
                export_date="2024-01-03T00:00:00Z",
            ),
        )

        ignored = await service.set_ignored("a")

        assert ignored.success is True
        assert ignored.logs[-1].message == "Ignored a in 2024-01"
        stored = (await service.read("2024-01")).data
        assert stored.emails[0].ignored is True
        assert stored.emails[0].full_data_path is None
        assert stored.emails[1].ignored is False
        assert stored.last_updated == "2024-03-15T12:00:00Z"
        assert await service.full_store.exists("a", day) is False

        await service.full_store.save(FullMessage(id="a", stored_date="2024-01-03T00:00:00Z"), day)
        restored = await service.set_ignored("a", ignored=False, month="2024-01")

        assert restored.success is True
        assert restored.logs[-1].message == "Restored a in 2024-01"
        assert restored.data.full_data_path == "full/2024/01/02/a.json"
        assert (await service.read("2024-01")).data.emails[0].ignored is False

    @pytest.mark.asyncio
    async def test_set_ignored_unknown_message(self, service) -> None:
        result = await service.set_ignored("nope")

        assert result.success is False
        assert result.error == "Email nope not found"

    @pytest.mark.asyncio
    async def test_full_message_lookup_and_delete(self, service) -> None:
        day = date(2024, 1, 2)
        await service.full_store.save(FullMessage(id="a", snippet="hi", stored_date="2024-01-03T00:00:00Z"), day)

        found = await service.full_message("a", day)
        deleted = await service.delete_full_message("a", day)
        missing = await service.full_message("a", day)
        deleted_again = await service.delete_full_message("a", day)
        invalid = await service.full_message("../a", day)

        assert found.data.snippet == "hi"
        assert deleted.success is True
        assert missing.success is False
        assert "No full data for a" in missing.error
        assert deleted_again.success is False
        assert invalid.success is False
        assert "Invalid message id" in invalid.error

    @pytest.mark.asyncio
    async def test_stats_and_cleanup_of_orphans(self, service, item_factory) -> None:
        day = date(2024, 1, 2)
        await service.full_store.save(FullMessage(id="a", stored_date="2024-01-03T00:00:00Z"), day)
        await service.full_store.save(FullMessage(id="stale", stored_date="2024-01-03T00:00:00Z"), day)
        await service.write(
            "2024-01",
            Partition(
                date_range=month_date_range("2024-01"),
                total_emails=1,
                emails=[item_factory("a", "2024-01-02T10:00:00Z")],
                export_date="2024-01-03T00:00:00Z",
            ),
        )

        stats = await service.storage_stats()
        preview = await service.cleanup(dry_run=True)
        cleaned = await service.cleanup()
        rejected = await service.cleanup(files=["full/../gmail-export-2024-01.json"])

        assert stats.success is True
        assert (stats.data.full_data_files, stats.data.index_file_count) == (2, 1)
        assert stats.data.orphaned_files == ["full/2024/01/02/stale.json"]
        assert preview.data == ["full/2024/01/02/stale.json"]
        assert cleaned.success is True
        assert cleaned.data.deleted == ["full/2024/01/02/stale.json"]
        assert await service.full_store.exists("a", day) is True
        assert rejected.success is False
        assert rejected.data.errors[0].error == "Invalid file path"
        assert (await service.read("2024-01")).data.total_emails == 1

    @pytest.mark.asyncio
    async def test_smart_fetch_stores_full_data_when_enabled(self, service, mock_settings) -> None:
        result = await service.smart_fetch()

        assert result.success is True
        assert result.data.full_data_saved == 2
        assert (Path(mock_settings.partition_dir) / "full/2024/01/02/a.json").is_file()

    @pytest.mark.asyncio
    async def test_smart_fetch_skips_full_data_when_disabled(
        self, mock_settings, jan_provider, clock, recording_sleep
    ) -> None:
        settings = mock_settings.model_copy(update={"save_full_data": False})
        service = SyncService(settings, provider=jan_provider, clock=clock, sleep=recording_sleep)

        result = await service.smart_fetch()

        assert result.success is True
        assert result.data.full_data_saved == 0
        assert not (Path(mock_settings.partition_dir) / "full").exists()


def test_export_document_shape(item_factory) -> None:
    result = ExportResult(
        start=date(2024, 1, 1),
        end=date(2024, 1, 7),
        emails=[item_factory("a", "2024-01-02T10:00:00Z")],
        total_emails=1,
    )

    document = export_document(result, fetched_by="me@example.com", now=datetime(2024, 1, 8, tzinfo=timezone.utc))

    assert list(document) == ["dateRange", "totalEmails", "weeklyBreakdown", "emails", "exportDate", "fetchedBy"]
    assert document["exportDate"] == "2024-01-08T00:00:00Z"
    assert export_filename(date(2024, 1, 1), date(2024, 1, 7)) == "gmail-export-2024-01-01-to-2024-01-07.json"
