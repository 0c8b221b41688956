"""Rate-limited retrieval of messages from the mail provider."""

from .batch import BatchFetcher, BatchFetchResult
from .export import WeeklyExporter
from .ranges import gmail_date, range_query, weeks

__all__ = ["BatchFetchResult", "BatchFetcher", "WeeklyExporter", "gmail_date", "range_query", "weeks"]
