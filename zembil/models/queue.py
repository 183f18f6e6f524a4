"""
Pydantic models for download queue entries and the versioned queue file.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .package import PackageManager, utc_now

QUEUE_SCHEMA_VERSION = 1


class QueueStatus(str, Enum):
    """Lifecycle state of a queue entry."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    # Reserved, never assigned by the queue itself.
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({QueueStatus.PENDING, QueueStatus.DOWNLOADING})


def new_entry_id() -> str:
    return uuid.uuid4().hex


class QueueEntry(BaseModel):
    """A requested download that has not necessarily been resolved yet."""

    id: str = Field(default_factory=new_entry_id)
    package_name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    manager: PackageManager
    priority: int = 0
    status: QueueStatus = QueueStatus.PENDING
    queued_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def spec(self) -> str:
        return f"{self.package_name}@{self.version}"

    def same_identity(self, name: str, version: str, manager: PackageManager) -> bool:
        return (
            self.package_name == name
            and self.version == version
            and self.manager == manager
        )


class QueueFile(BaseModel):
    """On-disk envelope for the queue, versioned so old files stay readable."""

    schema_version: int = QUEUE_SCHEMA_VERSION
    entries: list[QueueEntry] = Field(default_factory=list)


# Field names used by the legacy format: a bare JSON list of camelCase entries.
LEGACY_FIELD_MAP = {
    "packageName": "package_name",
    "queuedAt": "queued_at",
    "startedAt": "started_at",
    "completedAt": "completed_at",
}


def from_legacy_entry(raw: dict[str, Any]) -> dict[str, Any]:
    """Renames the camelCase keys of a legacy queue entry to the current schema."""
    return {LEGACY_FIELD_MAP.get(key, key): value for key, value in raw.items()}


@dataclass
class QueueStats:
    """Number of queue entries in each status."""

    pending: int = 0
    downloading: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.downloading + self.completed + self.failed
