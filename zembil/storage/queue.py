"""
The durable, priority-ordered download queue.

The whole entry list is rewritten to disk after every mutation, including after
every single item processed during a sync, so an interrupted sync loses at most
the item that was in flight.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import List

from pydantic import ValidationError

from zembil.exceptions import DuplicateError, StorageError, UnsupportedManagerError
from zembil.models.package import PackageManager, utc_now
from zembil.models.queue import (
    ACTIVE_STATUSES,
    QUEUE_SCHEMA_VERSION,
    QueueEntry,
    QueueFile,
    QueueStats,
    QueueStatus,
    from_legacy_entry,
)
from zembil.models.stats import ItemOutcome, SyncResult

log = logging.getLogger(__name__)

EntryHandler = Callable[[QueueEntry], Awaitable[ItemOutcome]]


def _parse_manager(manager: PackageManager | str) -> PackageManager:
    try:
        return PackageManager(manager)
    except ValueError:
        supported = ", ".join(m.value for m in PackageManager)
        raise UnsupportedManagerError(
            f"Unsupported package manager: {manager} (expected one of {supported})"
        ) from None


class DownloadQueue:
    """A JSON-file backed queue of package download requests."""

    def __init__(self, queue_file: Path):
        self.queue_file = queue_file
        self._entries: list[QueueEntry] = []
        self._loaded = False
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _quarantine(self, reason: str) -> None:
        """Moves an unreadable queue file aside so it isn't overwritten silently."""
        corrupt_path = self.queue_file.with_name(self.queue_file.name + ".corrupt")
        log.warning(
            f"[yellow]Queue file '{self.queue_file}' is unreadable ({reason}). "
            f"Starting with an empty queue; the old file was moved to "
            f"'{corrupt_path.name}'.[/yellow]"
        )
        try:
            os.replace(self.queue_file, corrupt_path)
        except OSError as e:
            log.error(f"Could not move unreadable queue file aside: {e}")

    def _load_sync(self) -> list[QueueEntry]:
        """Reads the queue file. A missing or corrupt file is an empty queue."""
        if not self.queue_file.is_file():
            return []

        try:
            raw = self.queue_file.read_text(encoding="utf-8")
        except OSError as e:
            log.warning(f"Could not read queue file, starting empty: {e}")
            return []
        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            self._quarantine(f"invalid JSON: {e}")
            return []

        try:
            if isinstance(data, list):
                queue_file = QueueFile(entries=[from_legacy_entry(item) for item in data])
                log.info(
                    f"Migrated {len(queue_file.entries)} entries from the legacy "
                    "queue format."
                )
                return queue_file.entries

            queue_file = QueueFile.model_validate(data)
        except (ValidationError, TypeError) as e:
            self._quarantine(f"schema validation failed: {e.__class__.__name__}")
            return []

        if queue_file.schema_version > QUEUE_SCHEMA_VERSION:
            self._quarantine(
                f"schema version {queue_file.schema_version} is newer than "
                f"supported version {QUEUE_SCHEMA_VERSION}"
            )
            return []
        return queue_file.entries

    def _save_sync(self, payload: str) -> None:
        """Writes the queue atomically: temp file, fsync, rename."""
        self.queue_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.queue_file.parent, prefix=f".{self.queue_file.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.queue_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _persist(self) -> None:
        payload = QueueFile(entries=self._entries).model_dump_json(indent=2)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._save_sync, payload)
            except OSError as e:
                log.error(f"Failed to write queue file '{self.queue_file}': {e}")
                raise StorageError(f"Failed to write queue file: {e}") from e

    async def _checkpoint(self) -> None:
        """Persists during a sync; a write failure is logged, never fatal to the drain."""
        try:
            await self._persist()
        except StorageError as e:
            log.error(f"[red]Queue checkpoint failed, continuing sync: {e}[/red]")

    async def initialize(self) -> None:
        """Loads the queue from disk, creating an empty file on first run."""
        self._entries = await asyncio.to_thread(self._load_sync)
        self._loaded = True
        if not self.queue_file.exists():
            await self._persist()

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.initialize()

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def _sorted(self) -> list[QueueEntry]:
        # sorted() is stable, so equal timestamps keep insertion order.
        return sorted(self._entries, key=lambda e: (-e.priority, e.queued_at))

    async def add(
        self,
        package_name: str,
        version: str,
        manager: PackageManager | str,
        priority: int = 0,
    ) -> str:
        """
        Queues a package for download.

        Raises:
            DuplicateError: If the same package is already pending or downloading.
            UnsupportedManagerError: If the manager tag is unknown.
        """
        await self._ensure_loaded()
        manager = _parse_manager(manager)

        for entry in self._entries:
            if entry.status in ACTIVE_STATUSES and entry.same_identity(
                package_name, version, manager
            ):
                raise DuplicateError(
                    f"Package {package_name}@{version} ({manager.value}) is already "
                    f"queued with status '{entry.status.value}'."
                )

        entry = QueueEntry(
            package_name=package_name,
            version=version,
            manager=manager,
            priority=priority,
        )
        self._entries.append(entry)
        await self._persist()
        log.debug(f"Queued {entry.spec} ({manager.value}) with priority {priority}.")
        return entry.id

    async def remove(self, entry_id: str) -> bool:
        """Removes an entry regardless of its status."""
        await self._ensure_loaded()
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                del self._entries[index]
                await self._persist()
                return True
        return False

    async def get(self, entry_id: str) -> QueueEntry | None:
        await self._ensure_loaded()
        for entry in self._entries:
            if entry.id == entry_id:
                return entry.model_copy()
        return None

    async def list(self) -> List[QueueEntry]:
        """All entries by descending priority, then earliest queued first."""
        await self._ensure_loaded()
        return [entry.model_copy() for entry in self._sorted()]

    async def clear(self) -> None:
        """Empties the queue unconditionally, including in-progress entries."""
        await self._ensure_loaded()
        self._entries = []
        await self._persist()

    async def get_status(self) -> QueueStats:
        await self._ensure_loaded()
        stats = QueueStats()
        for entry in self._entries:
            if entry.status == QueueStatus.PENDING:
                stats.pending += 1
            elif entry.status == QueueStatus.DOWNLOADING:
                stats.downloading += 1
            elif entry.status == QueueStatus.COMPLETED:
                stats.completed += 1
            elif entry.status == QueueStatus.FAILED:
                stats.failed += 1
        return stats

    async def prune(
        self, statuses: Iterable[QueueStatus] = (QueueStatus.COMPLETED,)
    ) -> int:
        """Removes every entry in one of the given statuses."""
        await self._ensure_loaded()
        statuses = set(statuses)
        kept = [entry for entry in self._entries if entry.status not in statuses]
        removed = len(self._entries) - len(kept)
        if removed:
            self._entries = kept
            await self._persist()
        return removed

    async def recover_interrupted(self) -> int:
        """
        Returns entries stuck in 'downloading' to 'pending'.

        Only one process drains the queue, so a persisted 'downloading' entry at
        startup can only be the in-flight item of a sync that was killed.
        """
        await self._ensure_loaded()
        recovered = 0
        for entry in self._entries:
            if entry.status == QueueStatus.DOWNLOADING:
                entry.status = QueueStatus.PENDING
                entry.started_at = None
                recovered += 1
        if recovered:
            await self._persist()
            log.info(
                f"[yellow]Recovered {recovered} interrupted download(s) back to "
                "pending.[/yellow]"
            )
        return recovered

    async def process(self, handler: EntryHandler) -> SyncResult:
        """
        Drains the entries that are pending when the call starts, one at a time.

        Each entry is marked 'downloading' and persisted, handed to `handler`, then
        marked 'completed' or 'failed' and persisted again. A failing entry never
        stops the remaining ones from being processed.
        """
        await self._ensure_loaded()
        pending = [e for e in self._sorted() if e.status == QueueStatus.PENDING]
        result = SyncResult()

        for entry in pending:
            entry.status = QueueStatus.DOWNLOADING
            entry.started_at = utc_now()
            entry.completed_at = None
            entry.error = None
            await self._checkpoint()

            try:
                outcome = await handler(entry.model_copy())
            except Exception as e:
                log.error(
                    f"[red]✗ Unhandled error while processing {entry.spec}: {e}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )
                outcome = ItemOutcome.failure(e)

            entry.completed_at = utc_now()
            if outcome.ok:
                entry.status = QueueStatus.COMPLETED
                result.downloaded += 1
                result.total_size += outcome.size
            else:
                entry.status = QueueStatus.FAILED
                entry.error = outcome.message
                result.failed += 1
                result.errors.append(f"{entry.spec}: {entry.error}")
            await self._checkpoint()

        return result
