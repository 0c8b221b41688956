"""Unit tests for the incremental sync engine (Smart Fetch)."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mail_archive_sync.exceptions import (
    AuthenticationError,
    ConfigurationError,
    GmailAPIError,
    PartitionWriteError,
)
from mail_archive_sync.models import LogLevel, Partition
from mail_archive_sync.storage import FilePartitionStore, FullMessageStore
from mail_archive_sync.sync.engine import IncrementalSyncEngine, SyncState
from mail_archive_sync.sync.partitioning import month_date_range


class FailingWriteStore(FilePartitionStore):
    def __init__(self, directory: Path, failing_month: str) -> None:
        super().__init__(directory)
        self.failing_month = failing_month

    async def write(self, month: str, partition: Partition) -> None:
        if month == self.failing_month:
            raise PartitionWriteError(f"disk full while writing {month}")
        await super().write(month, partition)


@pytest.fixture
def feb_clock(clock):
    clock.now = datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc)
    return clock


@pytest.fixture
def two_month_provider(provider_factory, item_factory):
    return provider_factory(
        [
            item_factory("jan-1", "2025-01-20T10:00:00Z"),
            item_factory("feb-1", "2025-02-10T09:00:00Z"),
            item_factory("jan-2", "2025-01-25T10:00:00Z"),
        ]
    )


def _engine(provider, store, clock, sleep) -> IncrementalSyncEngine:
    return IncrementalSyncEngine(provider, store, clock=clock, sleep=sleep)


def _messages(result) -> list[str]:
    return [entry.message for entry in result.logs]


class TestIncrementalSyncEngine:
    """Test suite for IncrementalSyncEngine."""

    @pytest.mark.asyncio
    async def test_first_run_creates_two_month_partitions(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        store = FilePartitionStore(tmp_path)

        result = await _engine(two_month_provider, store, feb_clock, recording_sleep).run()

        assert result.success is True
        assert two_month_provider.queries == ["after:2025/01/16 before:2025/02/16"]
        assert [m.month for m in result.months] == ["2025-01", "2025-02"]
        assert all(m.created for m in result.months)
        assert (result.new_items, result.duplicates) == (3, 0)

        january = await store.read("2025-01")
        february = await store.read("2025-02")
        assert [i.id for i in january.emails] == ["jan-1", "jan-2"]
        assert january.total_emails == 2
        assert february.total_emails == 1
        assert january.last_updated == "2025-02-15T12:00:00Z"
        assert february.fetched_by == "me@example.com"

        assert result.scan is not None
        assert result.scan.partition_count == 2
        assert result.scan.most_recent_item_timestamp == datetime(2025, 2, 10, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_rerun_with_overlap_reports_duplicates_only(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        store = FilePartitionStore(tmp_path)
        engine = _engine(two_month_provider, store, feb_clock, recording_sleep)
        await engine.run()
        before = {m: (await store.read(m)).to_document() for m in ("2025-01", "2025-02")}

        feb_clock.advance(minutes=5)
        result = await engine.run()

        assert two_month_provider.queries[-1] == "after:2025/02/10 before:2025/02/16"
        assert (result.new_items, result.duplicates) == (0, 3)
        for month, document in before.items():
            after = (await store.read(month)).to_document()
            after.pop("lastUpdated")
            document.pop("lastUpdated")
            assert after == document

    @pytest.mark.asyncio
    async def test_no_new_ids_is_up_to_date(self, tmp_path, fake_provider, feb_clock, recording_sleep) -> None:
        result = await _engine(fake_provider, FilePartitionStore(tmp_path), feb_clock, recording_sleep).run()

        assert result.success is True
        assert result.listed == 0
        assert "No new emails found. You're up to date!" in _messages(result)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_undated_items_are_skipped_with_warning(
        self, tmp_path, two_month_provider, item_factory, feb_clock, recording_sleep
    ) -> None:
        two_month_provider.messages["nodate"] = item_factory("nodate", None)

        result = await _engine(two_month_provider, FilePartitionStore(tmp_path), feb_clock, recording_sleep).run()

        assert result.skipped_undated == 1
        warnings = [e.message for e in result.logs if e.level is LogLevel.WARNING]
        assert any("nodate" in message for message in warnings)
        assert result.new_items == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [AuthenticationError("Token expired. Please sign in again."), ConfigurationError("credentials.json missing")],
    )
    async def test_auth_failure_aborts_without_writes(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep, error
    ) -> None:
        two_month_provider.auth_error = error
        engine = _engine(two_month_provider, FilePartitionStore(tmp_path), feb_clock, recording_sleep)

        result = await engine.run()

        assert result.success is False
        assert result.error == str(error)
        assert engine.state is SyncState.IDLE
        assert any(e.level is LogLevel.ERROR for e in result.logs)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_auth_failure_during_fetch_leaves_partitions_untouched(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        two_month_provider.get_errors["jan-2"] = AuthenticationError("Please sign in again.")

        result = await _engine(two_month_provider, FilePartitionStore(tmp_path), feb_clock, recording_sleep).run()

        assert result.success is False
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_one_month_write_failure_does_not_stop_others(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        store = FailingWriteStore(tmp_path, failing_month="2025-01")

        result = await _engine(two_month_provider, store, feb_clock, recording_sleep).run()

        assert result.success is True
        outcomes = {m.month: m for m in result.months}
        assert outcomes["2025-01"].success is False
        assert "disk full" in outcomes["2025-01"].error
        assert outcomes["2025-02"].success is True
        assert await store.read("2025-01") is None
        assert (await store.read("2025-02")).total_emails == 1

    @pytest.mark.asyncio
    async def test_failed_fetches_are_skipped(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        two_month_provider.get_errors["feb-1"] = GmailAPIError("rate limited")

        result = await _engine(two_month_provider, FilePartitionStore(tmp_path), feb_clock, recording_sleep).run()

        assert result.success is True
        assert result.failed_fetches == 1
        assert [m.month for m in result.months] == ["2025-01"]

    @pytest.mark.asyncio
    async def test_log_stream_covers_the_run(
        self, tmp_path, provider_factory, item_factory, feb_clock, recording_sleep
    ) -> None:
        provider = provider_factory([item_factory(f"m{i}", "2025-02-01T00:00:00Z") for i in range(25)])
        seen = []

        result = await IncrementalSyncEngine(
            provider, FilePartitionStore(tmp_path), clock=feb_clock, sleep=recording_sleep
        ).run(listener=seen.append)

        messages = _messages(result)
        assert messages[0] == "Starting Smart Fetching..."
        assert "No existing emails found, fetching last 30 days" in messages
        assert sum(1 for m in messages if m.startswith("Processing batch")) == 3
        assert any(m.startswith("Created 2025-02 (25 new email(s), 0 duplicate(s)") for m in messages)
        assert any(m.startswith("Smart Fetch complete") for m in messages)
        assert recording_sleep.calls == [0.2, 0.2]
        assert seen == result.logs
        assert all(e.timestamp == feb_clock.now for e in result.logs)

    @pytest.mark.asyncio
    async def test_undecodable_partition_fails_only_its_month(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        (tmp_path / "gmail-export-2025-01.json").write_bytes(b'{"emails": ["\xff\xfe"]}')
        store = FilePartitionStore(tmp_path)

        result = await _engine(two_month_provider, store, feb_clock, recording_sleep).run()

        assert result.success is True
        outcomes = {m.month: m for m in result.months}
        assert outcomes["2025-01"].success is False
        assert "not valid JSON" in outcomes["2025-01"].error
        assert outcomes["2025-02"].success is True
        assert (await store.read("2025-02")).total_emails == 1
        assert (tmp_path / "gmail-export-2025-01.json").read_bytes() == b'{"emails": ["\xff\xfe"]}'

    @pytest.mark.asyncio
    async def test_full_data_written_for_new_items_only(
        self, tmp_path, provider_factory, item_factory, feb_clock, recording_sleep
    ) -> None:
        store = FilePartitionStore(tmp_path)
        existing = item_factory("jan-1", "2025-01-20T10:00:00Z")
        await store.write(
            "2025-01",
            Partition(
                date_range=month_date_range("2025-01"),
                total_emails=1,
                emails=[existing],
                export_date="2025-01-21T00:00:00Z",
            ),
        )
        provider = provider_factory(
            [
                existing,
                item_factory("jan-2", "2025-01-25T10:00:00Z"),
                item_factory("muted", "2025-01-26T10:00:00Z", ignored=True),
            ]
        )

        result = await IncrementalSyncEngine(
            provider,
            store,
            full_store=FullMessageStore(tmp_path),
            clock=feb_clock,
            sleep=recording_sleep,
        ).run()

        assert result.success is True
        assert result.full_data_saved == 1
        assert (tmp_path / "full/2025/01/25/jan-2.json").is_file()
        assert not (tmp_path / "full/2025/01/20/jan-1.json").exists()
        assert not (tmp_path / "full/2025/01/26/muted.json").exists()

        january = {item.id: item for item in (await store.read("2025-01")).emails}
        assert january["jan-2"].full_data_path == "full/2025/01/25/jan-2.json"
        assert january["jan-2"].has_attachments is False
        assert january["jan-1"].full_data_path is None
        assert january["muted"].full_data_path is None
        stored = json.loads((tmp_path / "gmail-export-2025-01.json").read_text(encoding="utf-8"))
        assert stored["version"] == "2.0"

    @pytest.mark.asyncio
    async def test_full_data_failure_still_merges_item(
        self, tmp_path, two_month_provider, feb_clock, recording_sleep
    ) -> None:
        # A regular file where the full/ directory should be.
        (tmp_path / "full").write_text("", encoding="utf-8")
        store = FilePartitionStore(tmp_path)

        result = await IncrementalSyncEngine(
            two_month_provider,
            store,
            full_store=FullMessageStore(tmp_path),
            clock=feb_clock,
            sleep=recording_sleep,
        ).run()

        assert result.success is True
        assert result.full_data_saved == 0
        assert (await store.read("2025-01")).total_emails == 2
        assert any(m.startswith("Could not store full data for jan-1") for m in _messages(result))
