"""
Result types for sync passes, per-item outcomes and cache maintenance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from zembil.exceptions import (
    DuplicateError,
    NotFoundError,
    StorageError,
    UnsupportedManagerError,
    UpstreamError,
)

from .package import PackageRecord


class ErrorKind(str, Enum):
    """Classifies why a queue entry failed."""

    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    STORAGE = "storage"
    UPSTREAM = "upstream"
    UNSUPPORTED = "unsupported"
    UNEXPECTED = "unexpected"

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorKind":
        # Order matters: UnsupportedManagerError is a NotFoundError.
        if isinstance(error, UnsupportedManagerError):
            return cls.UNSUPPORTED
        if isinstance(error, NotFoundError):
            return cls.NOT_FOUND
        if isinstance(error, DuplicateError):
            return cls.DUPLICATE
        if isinstance(error, (StorageError, OSError)):
            return cls.STORAGE
        if isinstance(error, UpstreamError):
            return cls.UPSTREAM
        return cls.UNEXPECTED


@dataclass
class ItemOutcome:
    """The result of turning one queue entry into cache state."""

    ok: bool
    error_kind: ErrorKind | None = None
    message: str | None = None
    record: PackageRecord | None = None
    docs_cached: bool = False
    examples_cached: bool = False

    @classmethod
    def success(
        cls,
        record: PackageRecord,
        docs_cached: bool = False,
        examples_cached: bool = False,
    ) -> "ItemOutcome":
        return cls(
            ok=True,
            record=record,
            docs_cached=docs_cached,
            examples_cached=examples_cached,
        )

    @classmethod
    def failure(cls, error: BaseException) -> "ItemOutcome":
        return cls(
            ok=False,
            error_kind=ErrorKind.from_exception(error),
            message=str(error) or type(error).__name__,
        )

    @property
    def size(self) -> int:
        return self.record.size if self.record else 0


@dataclass
class SyncResult:
    """Aggregate outcome of draining the download queue once."""

    downloaded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    total_size: int = 0

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class CacheStats:
    """Aggregate statistics over the metadata index."""

    total_packages: int
    total_size: int
    oldest_cache: datetime
    newest_cache: datetime


@dataclass
class CleanupReport:
    """What a cache cleanup pass deleted."""

    artifacts_removed: int = 0
    docs_removed: int = 0
    examples_removed: int = 0
    partials_removed: int = 0

    @property
    def total(self) -> int:
        return (
            self.artifacts_removed
            + self.docs_removed
            + self.examples_removed
            + self.partials_removed
        )
