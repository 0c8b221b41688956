"""Month grouping, ordering and merge rules for partition documents.

Everything here is pure: no IO, no clock. Callers pass ``now`` in.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone

import structlog

from mail_archive_sync.gmail.parsing import format_timestamp, parse_date
from mail_archive_sync.models import DateRange, MailItem, Partition

logger = structlog.get_logger()

MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Items may carry hasAttachments, attachmentCount and fullDataPath.
PARTITION_VERSION = "2.0"


def is_month_key(value: str) -> bool:
    return bool(MONTH_KEY_RE.match(value))


def resolve_item_date(item: MailItem) -> datetime | None:
    """Resolve the timestamp of a message.

    The structured ``date`` field wins; otherwise the ``Date`` header is looked
    up by case-insensitive name. Returns None when neither parses.
    """

    if item.date:
        parsed = parse_date(item.date)
        if parsed is not None:
            return parsed
    return parse_date(item.header("date"))


def month_key(value: datetime) -> str:
    """Return the YYYY-MM key of ``value`` in UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value.year:04d}-{value.month:02d}"


def item_day(item: MailItem) -> date | None:
    """UTC calendar day of the message, or None when it has no usable date."""

    resolved = resolve_item_date(item)
    if resolved is None:
        return None
    return resolved.astimezone(timezone.utc).date()


def month_date_range(month: str) -> DateRange:
    """First and last day of a YYYY-MM month."""

    year, month_num = (int(p) for p in month.split("-"))
    last_day = calendar.monthrange(year, month_num)[1]
    return DateRange(start=f"{month}-01", end=f"{month}-{last_day:02d}")


def group_by_month(items: list[MailItem]) -> tuple[dict[str, list[MailItem]], list[MailItem]]:
    """Bucket items by month of their resolved timestamp.

    Returns:
        (groups keyed by YYYY-MM, items without a resolvable date)
    """

    grouped: dict[str, list[MailItem]] = {}
    undated: list[MailItem] = []
    for item in items:
        resolved = resolve_item_date(item)
        if resolved is None:
            undated.append(item)
            continue
        grouped.setdefault(month_key(resolved), []).append(item)
    return grouped, undated


def sort_items(items: list[MailItem]) -> list[MailItem]:
    """Ascending by resolved timestamp; undated items last, in original order."""

    dated: list[tuple[datetime, int, MailItem]] = []
    undated: list[MailItem] = []
    for index, item in enumerate(items):
        resolved = resolve_item_date(item)
        if resolved is None:
            undated.append(item)
        else:
            dated.append((resolved, index, item))
    dated.sort(key=lambda entry: (entry[0], entry[1]))
    return [item for _, _, item in dated] + undated


def deduplicate(items: list[MailItem]) -> list[MailItem]:
    """Keep the first occurrence of every id."""

    seen: set[str] = set()
    unique: list[MailItem] = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            unique.append(item)
    return unique


@dataclass(frozen=True)
class MergeStats:
    """Counts produced by a single merge."""

    new_items: int
    duplicates: int
    total: int
    created: bool


def merge_partition(
    month: str,
    existing: Partition | None,
    incoming: list[MailItem],
    *,
    fetched_by: str,
    now: datetime,
) -> tuple[Partition, MergeStats]:
    """Merge ``incoming`` into the partition for ``month``.

    Items whose id is already stored are discarded and counted as duplicates;
    the stored item wins, so its ``ignored`` flag carries over. Repeats inside
    ``incoming`` count as duplicates as well.
    """

    stored = list(existing.emails) if existing is not None else []
    known = {item.id for item in stored}

    appended: list[MailItem] = []
    duplicates = 0
    for item in incoming:
        if item.id in known:
            duplicates += 1
            continue
        known.add(item.id)
        appended.append(item)

    merged = sort_items(stored + appended)
    now_iso = format_timestamp(now)

    partition = Partition(
        date_range=month_date_range(month),
        total_emails=len(merged),
        emails=merged,
        export_date=existing.export_date if existing is not None else now_iso,
        fetched_by=fetched_by,
        last_updated=now_iso,
        migration_info=existing.migration_info if existing is not None else None,
        version=PARTITION_VERSION,
    )

    logger.debug(
        "partition_merged",
        month=month,
        new_items=len(appended),
        duplicates=duplicates,
        total=len(merged),
    )

    return partition, MergeStats(
        new_items=len(appended),
        duplicates=duplicates,
        total=len(merged),
        created=existing is None,
    )
