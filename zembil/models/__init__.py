"""
Data Models Layer.

This package contains the Pydantic models and result types that define the core
data structures used throughout the application: package records, queue
entries, configuration and sync statistics.
"""

from .config import CacheConfig
from .package import PackageInfo, PackageManager, PackageRecord, package_id
from .queue import QueueEntry, QueueStats, QueueStatus
from .stats import CacheStats, CleanupReport, ErrorKind, ItemOutcome, SyncResult

__all__ = [
    "CacheConfig",
    "CacheStats",
    "CleanupReport",
    "ErrorKind",
    "ItemOutcome",
    "PackageInfo",
    "PackageManager",
    "PackageRecord",
    "QueueEntry",
    "QueueStats",
    "QueueStatus",
    "SyncResult",
    "package_id",
]
