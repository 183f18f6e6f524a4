"""
Drains the download queue: fetches each entry from its package source and
commits the result into the cache.
"""

import asyncio
import logging
import shutil
import tempfile
import time
from pathlib import Path

import aiofiles
from rich.markup import escape

from zembil.exceptions import StorageError
from zembil.models.config import CacheConfig
from zembil.models.queue import QueueEntry
from zembil.models.stats import ItemOutcome, SyncResult
from zembil.sources.base import PackageSource
from zembil.sources.registry import SourceRegistry
from zembil.storage.cache import CacheStore
from zembil.storage.queue import DownloadQueue
from zembil.utils.formatting import format_duration, format_size
from zembil.utils.structured_logger import SyncLogger

log = logging.getLogger(__name__)

DOCS_FILENAME = "README.md"


async def _write_text(path: Path, text: str) -> None:
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(text)


def _remove_quietly(path: Path | None) -> None:
    if path is None:
        return
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Could not remove temporary file '{path}': {e}")


class SyncOrchestrator:
    """Turns pending queue entries into cached packages, one at a time."""

    def __init__(
        self,
        cache: CacheStore,
        queue: DownloadQueue,
        registry: SourceRegistry,
        config: CacheConfig,
        sync_logger: SyncLogger | None = None,
    ):
        self.cache = cache
        self.queue = queue
        self.registry = registry
        self.config = config
        self.sync_logger = sync_logger

    async def sync(self) -> SyncResult:
        """Processes every entry that is pending when the pass starts."""
        start_time = time.monotonic()
        status = await self.queue.get_status()
        if not status.pending:
            log.info("Queue is empty. Nothing to sync.")
        else:
            log.info(f"Syncing {status.pending} queued package(s)...")
        if self.sync_logger:
            self.sync_logger.sync_started(status.pending, self.registry.managers)

        result = await self.queue.process(self.process_entry)

        duration = time.monotonic() - start_time
        if status.pending:
            log.info(
                f"Sync finished in {format_duration(duration)}: "
                f"[green]{result.downloaded} cached[/green] "
                f"({format_size(result.total_size)}), "
                f"[red]{result.failed} failed[/red]."
            )
        if self.sync_logger:
            self.sync_logger.sync_completed(
                duration, result.downloaded, result.failed, result.total_size
            )

        await self._check_size_limit()
        return result

    async def _check_size_limit(self) -> None:
        try:
            cache_size = await self.cache.get_size()
        except StorageError as e:
            log.warning(f"Could not compute cache size: {e}")
            return
        if cache_size > self.config.max_size:
            log.warning(
                f"[yellow]Cache size {format_size(cache_size)} exceeds the configured "
                f"limit of {format_size(self.config.max_size)}. Remove packages with "
                "'zembil cache remove'.[/yellow]"
            )

    async def process_entry(self, entry: QueueEntry) -> ItemOutcome:
        """
        Fetches and caches one queue entry.

        Never raises: every failure is returned as an unsuccessful ItemOutcome.
        """
        start_time = time.monotonic()
        if self.sync_logger:
            self.sync_logger.item_started(
                entry.id, entry.spec, entry.manager.value, entry.priority
            )

        try:
            outcome = await self._fetch_and_commit(entry)
        except Exception as e:
            outcome = ItemOutcome.failure(e)
            log.error(
                f"  [red]✗ Failed:[/] {escape(entry.spec)} ({escape(outcome.message)})",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            if self.sync_logger:
                self.sync_logger.item_failed(
                    entry.id,
                    entry.spec,
                    entry.manager.value,
                    outcome.error_kind.value,
                    outcome.message,
                )
            return outcome

        extras = []
        if outcome.docs_cached:
            extras.append("docs")
        if outcome.examples_cached:
            extras.append("examples")
        log.info(
            f"  [green]✓ Cached:[/] {escape(entry.spec)} "
            f"[dim]({format_size(outcome.size)}"
            f"{', ' + ', '.join(extras) if extras else ''})[/dim]"
        )
        if self.sync_logger:
            self.sync_logger.item_completed(
                entry.id,
                entry.spec,
                entry.manager.value,
                outcome.size,
                time.monotonic() - start_time,
                outcome.docs_cached,
                outcome.examples_cached,
            )
        return outcome

    async def _fetch_and_commit(self, entry: QueueEntry) -> ItemOutcome:
        source = self.registry.get(entry.manager)
        await asyncio.to_thread(self.config.temp_dir.mkdir, parents=True, exist_ok=True)
        staging_dir = Path(
            await asyncio.to_thread(tempfile.mkdtemp, prefix="sync-", dir=self.config.temp_dir)
        )
        artifact_path: Path | None = None

        try:
            info = await source.get_package_info(entry.package_name, entry.version)
            # Commit under the queued identity; upstream may report a different spelling.
            info = info.model_copy(
                update={
                    "name": entry.package_name,
                    "version": entry.version,
                    "manager": entry.manager,
                }
            )
            artifact_path = Path(
                await source.download_package(entry.package_name, entry.version)
            )

            docs_source = None
            if self.config.enable_documentation:
                docs_source = await self._stage_documentation(source, entry, staging_dir)
            examples_source = None
            if self.config.enable_examples:
                examples_source = await self._stage_examples(source, entry, staging_dir)

            await self.cache.add(info, artifact_path, docs_source, examples_source)
            record = await self.cache.get(info.name, info.version, info.manager)
            if record is None:
                raise StorageError(f"Record for {info.spec} vanished right after commit.")

            return ItemOutcome.success(
                record,
                docs_cached=record.docs_path is not None,
                examples_cached=record.examples_path is not None,
            )
        finally:
            await asyncio.to_thread(_remove_quietly, artifact_path)
            await asyncio.to_thread(_remove_quietly, staging_dir)

    async def _stage_documentation(
        self, source: PackageSource, entry: QueueEntry, staging_dir: Path
    ) -> Path | None:
        """Writes the package documentation into the staging area, if there is any."""
        try:
            text = await source.get_documentation(entry.package_name, entry.version)
        except Exception as e:
            log.warning(
                f"[yellow]Documentation for {escape(entry.spec)} is unavailable: "
                f"{escape(str(e))}[/yellow]"
            )
            return None
        if not text or not text.strip():
            return None

        docs_dir = staging_dir / "docs"
        await asyncio.to_thread(docs_dir.mkdir)
        await _write_text(docs_dir / DOCS_FILENAME, text)
        return docs_dir

    async def _stage_examples(
        self, source: PackageSource, entry: QueueEntry, staging_dir: Path
    ) -> Path | None:
        """Writes each example as `example-<n>.md` into the staging area."""
        try:
            examples = await source.get_examples(entry.package_name, entry.version)
        except Exception as e:
            log.warning(
                f"[yellow]Examples for {escape(entry.spec)} are unavailable: "
                f"{escape(str(e))}[/yellow]"
            )
            return None
        examples = [text for text in examples or [] if text and text.strip()]
        if not examples:
            return None

        examples_dir = staging_dir / "examples"
        await asyncio.to_thread(examples_dir.mkdir)
        for index, text in enumerate(examples, start=1):
            await _write_text(examples_dir / f"example-{index}.md", text)
        return examples_dir
