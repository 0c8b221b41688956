"""Date-range decomposition and provider query construction."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from mail_archive_sync.exceptions import InvalidDateRangeError
from mail_archive_sync.models import WeekWindow

_WEEK = timedelta(days=7)
_DAY = timedelta(days=1)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def week_label(start: date, end: date) -> str:
    """Display label such as ``Jan 1 – Jan 7``."""

    return f"{start.strftime('%b')} {start.day} – {end.strftime('%b')} {end.day}"


def weeks(start: date | datetime, end: date | datetime) -> list[WeekWindow]:
    """Split ``[start, end]`` into contiguous 7-day windows.

    Windows begin at ``start``; the last one is clipped to ``end``.

    Raises:
        InvalidDateRangeError: If ``start`` is after ``end``.
    """

    first, last = _as_date(start), _as_date(end)
    if first > last:
        raise InvalidDateRangeError(f"Start date {first.isoformat()} is after end date {last.isoformat()}")

    windows: list[WeekWindow] = []
    cursor = first
    while cursor <= last:
        window_end = min(cursor + _WEEK - _DAY, last)
        windows.append(WeekWindow(start=cursor, end=window_end, label=week_label(cursor, window_end)))
        cursor = window_end + _DAY
    return windows


def gmail_date(value: date | datetime) -> str:
    """Format a day in the provider's ``YYYY/MM/DD`` query syntax."""

    day = _as_date(value)
    return f"{day.year:04d}/{day.month:02d}/{day.day:02d}"


def range_query(start: date | datetime, end: date | datetime) -> str:
    """Query for messages dated from ``start`` through ``end`` (inclusive days)."""

    return f"after:{gmail_date(start)} before:{gmail_date(_as_date(end) + _DAY)}"
