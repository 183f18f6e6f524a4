"""
The top-level entry point for programmatic use: wires the cache, queue and
package sources together from a single configuration.
"""

import asyncio
import logging
from pathlib import Path
from typing import List

from zembil.exceptions import NotFoundError
from zembil.models.config import CacheConfig
from zembil.models.package import PackageManager, PackageRecord
from zembil.models.stats import CacheStats, SyncResult
from zembil.sources.registry import SourceRegistry, build_default_registry
from zembil.storage.cache import CacheStore
from zembil.storage.queue import DownloadQueue
from zembil.utils.structured_logger import create_structured_logger
from zembil.utils.versions import latest_version, version_key

from .sync import DOCS_FILENAME, SyncOrchestrator

log = logging.getLogger(__name__)

QUEUE_FILENAME = "queue.json"


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.warning(f"Could not read '{path}': {e}")
        return None


def _read_documentation(docs_path: Path) -> str | None:
    if docs_path.is_file():
        return _read_text(docs_path)
    readme = docs_path / DOCS_FILENAME
    if readme.is_file():
        return _read_text(readme)
    if docs_path.is_dir():
        # Documentation cached as a directory without a README: join its files.
        parts = [
            text
            for child in sorted(docs_path.iterdir(), key=lambda p: version_key(p.name))
            if child.is_file() and (text := _read_text(child)) is not None
        ]
        return "\n\n".join(parts) if parts else None
    return None


def _read_examples(examples_path: Path) -> list[str]:
    if examples_path.is_file():
        text = _read_text(examples_path)
        return [text] if text is not None else []
    if not examples_path.is_dir():
        return []
    files = sorted(
        (child for child in examples_path.iterdir() if child.is_file()),
        key=lambda p: version_key(p.name),
    )
    return [text for child in files if (text := _read_text(child)) is not None]


class Zembil:
    """
    Offline package cache.

    Usage:
        zembil = Zembil(CacheConfig(cache_dir=Path("~/.zembil").expanduser()))
        await zembil.initialize()
        await zembil.queue.add("left-pad", "1.3.0", "npm")
        await zembil.sync()
        await zembil.install("left-pad", Path("vendor/left-pad"))
        await zembil.close()
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        registry: SourceRegistry | None = None,
    ):
        self.config = config or CacheConfig()
        self.cache = CacheStore(self.config.cache_dir)
        self.queue = DownloadQueue(self.config.cache_dir / QUEUE_FILENAME)
        self.registry = registry or build_default_registry(self.config)

    @property
    def cache_dir(self) -> Path:
        return self.config.cache_dir

    async def initialize(self) -> None:
        """Creates the cache layout, loads the queue and recovers interrupted work."""
        for directory in (self.config.cache_dir, self.config.temp_dir):
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        await self.cache.initialize()
        await self.queue.initialize()
        if self.config.resume_interrupted:
            await self.queue.recover_interrupted()

    async def add_to_queue(
        self,
        name: str,
        version: str,
        manager: PackageManager | str,
        priority: int = 0,
    ) -> str:
        """Queues a package for the next sync and returns the queue entry id."""
        return await self.queue.add(name, version, manager, priority)

    async def sync(self) -> SyncResult:
        """
        Downloads everything currently pending in the queue.

        In offline mode nothing is fetched and an empty result is returned.
        """
        if self.config.offline_mode:
            log.warning(
                "[yellow]Offline mode is enabled; skipping sync. Disable it with "
                "'zembil config set offline_mode false'.[/yellow]"
            )
            return SyncResult()

        structured_logger, sync_logger = create_structured_logger(
            self.config.log_dir, enable_json=self.config.json_logs
        )
        structured_logger.set_session_context(cache_dir=str(self.config.cache_dir))
        orchestrator = SyncOrchestrator(
            self.cache,
            self.queue,
            self.registry,
            self.config,
            sync_logger if self.config.json_logs else None,
        )
        try:
            return await orchestrator.sync()
        finally:
            structured_logger.close()

    async def find_cached_package(
        self,
        name: str,
        version: str | None = None,
        manager: PackageManager | str | None = None,
    ) -> PackageRecord | None:
        """
        Looks a package up in the cache.

        With a version this is an exact lookup; without one the highest cached
        version wins. Pre-releases rank below the matching release.
        """
        manager = PackageManager(manager) if manager else None
        if version:
            return await self.cache.get(name, version, manager)

        records = await self.cache.metadata.list_by_name(name)
        if manager:
            records = [record for record in records if record.manager == manager]
        if not records:
            return None
        managers = {record.manager for record in records}
        ecosystem = managers.pop() if len(managers) == 1 else None
        best = latest_version([record.version for record in records], ecosystem)
        return next(record for record in records if record.version == best)

    async def install(
        self,
        name: str,
        target_dir: Path | str,
        version: str | None = None,
        manager: PackageManager | str | None = None,
    ) -> Path:
        """
        Installs a cached package without touching the network.

        Raises:
            NotFoundError: If the package isn't cached or its artifact is gone.
            UnsupportedManagerError: If no source can install its manager.
        """
        spec = f"{name}@{version}" if version else name
        record = await self.find_cached_package(name, version, manager)
        if record is None:
            raise NotFoundError(
                f"Package {spec} not found in cache. Queue it and run 'zembil sync' first."
            )

        artifact_path = Path(record.artifact_path)
        if not await asyncio.to_thread(artifact_path.is_file):
            raise NotFoundError(
                f"The cached artifact for {record.spec} is missing from '{artifact_path}'. "
                "Re-queue the package and run 'zembil sync'."
            )

        source = self.registry.get(record.manager)
        target = Path(target_dir).expanduser()
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        installed = await source.install(record.name, record.version, target, artifact_path)
        log.info(f"[green]✓ Installed {record.spec} ({record.manager.value}) to {installed}[/green]")
        return installed

    async def get_documentation(self, name: str, version: str | None = None) -> str | None:
        """The cached documentation text, or None if none was cached."""
        record = await self.find_cached_package(name, version)
        if record is None or not record.docs_path:
            return None
        return await asyncio.to_thread(_read_documentation, Path(record.docs_path))

    async def get_examples(self, name: str, version: str | None = None) -> List[str]:
        """The cached examples in order, or an empty list."""
        record = await self.find_cached_package(name, version)
        if record is None or not record.examples_path:
            return []
        return await asyncio.to_thread(_read_examples, Path(record.examples_path))

    async def list_versions(self, name: str, manager: PackageManager | str) -> List[str]:
        """Published versions of a package, straight from its registry."""
        return await self.registry.get(manager).list_versions(name)

    async def get_stats(self) -> CacheStats:
        return await self.cache.stats()

    async def close(self) -> None:
        """Releases the HTTP sessions held by the package sources."""
        await self.registry.close()
