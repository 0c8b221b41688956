"""Persistence for month partitions, full messages and local session documents."""

from .base import PartitionStore, is_legacy_key
from .filesystem import FilePartitionStore
from .full_data import FullMessageStore, full_data_relative_path
from .local import LocalStore, StorageUsage
from .maintenance import StorageMaintenance

__all__ = [
    "FilePartitionStore",
    "FullMessageStore",
    "LocalStore",
    "PartitionStore",
    "StorageMaintenance",
    "StorageUsage",
    "full_data_relative_path",
    "is_legacy_key",
]
