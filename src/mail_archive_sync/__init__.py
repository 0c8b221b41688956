"""Mail Archive Sync - incremental Gmail archiving into monthly partitions.

This package fetches mail from the Gmail API under rate limits, merges new
messages into month-partitioned JSON archives without duplication, exports
arbitrary date ranges in weekly batches, and keeps a small local cache of
recent results.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from mail_archive_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
