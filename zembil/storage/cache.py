"""
A content-addressable file store for package artifacts, documentation and examples.
The store keeps its files consistent with the metadata index and can reconcile
orphaned files left behind by interrupted operations.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List

from zembil.exceptions import StorageError
from zembil.models.package import (
    PackageInfo,
    PackageManager,
    PackageRecord,
    package_id,
    utc_now,
)
from zembil.models.stats import CacheStats, CleanupReport

from .integrity import FileIntegrityChecker
from .metadata import MetadataStore

log = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"
_MULTI_SUFFIXES = (".tar.gz", ".tar.bz2", ".tar.xz")


def artifact_suffix(path: Path) -> str:
    """Returns the archive extension of an artifact, keeping double suffixes intact."""
    name = path.name.lower()
    for suffix in _MULTI_SUFFIXES:
        if name.endswith(suffix):
            return suffix
    return path.suffix.lower()


def _id_from_entry(entry: Path) -> str:
    # Store ids are hex digests, so everything before the first dot is the id.
    return entry.name.split(".", 1)[0]


def _delete_path(path: Path) -> bool:
    """Deletes a file or directory tree. Returns False if nothing was there."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


def _partial(path: Path) -> Path:
    return path.with_name(path.name + PARTIAL_SUFFIX)


def _discard(path: Path) -> None:
    try:
        _delete_path(path)
    except OSError as e:
        log.warning(f"Could not remove staged file '{path}': {e}")


def _copy_path(source: Path, destination: Path) -> None:
    if source.is_dir():
        shutil.copytree(source, destination)
    else:
        shutil.copy2(source, destination)


class CacheStore:
    """
    Owns the on-disk layout of the cache:

        <cache_dir>/packages/<id><ext>   package artifacts
        <cache_dir>/docs/<id>            documentation (file or directory)
        <cache_dir>/examples/<id>        examples (file or directory)
        <cache_dir>/cache.db             metadata index
    """

    def __init__(self, cache_dir: Path, metadata: MetadataStore | None = None):
        self.cache_dir = cache_dir
        self.packages_dir = cache_dir / "packages"
        self.docs_dir = cache_dir / "docs"
        self.examples_dir = cache_dir / "examples"
        self.metadata = metadata or MetadataStore(cache_dir / "cache.db")

    async def initialize(self) -> None:
        """Creates the directory structure and the metadata schema."""
        try:
            for directory in (self.packages_dir, self.docs_dir, self.examples_dir):
                await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create cache directories: {e}") from e
        await self.metadata.initialize()

    def _store_files_sync(
        self,
        info: PackageInfo,
        artifact_source: Path,
        docs_source: Path | None,
        examples_source: Path | None,
    ) -> PackageRecord:
        """Copies the artifact (and optional extras) into the store and builds the record."""
        if not artifact_source.is_file():
            raise StorageError(f"Artifact for {info.spec} not found at '{artifact_source}'.")

        record_id = package_id(info.name, info.version, info.manager)
        artifact_path = self.packages_dir / f"{record_id}{artifact_suffix(artifact_source)}"
        partial_path = artifact_path.with_name(artifact_path.name + PARTIAL_SUFFIX)
        docs_dest = self.docs_dir / record_id
        examples_dest = self.examples_dir / record_id
        staged = [partial_path, _partial(docs_dest), _partial(examples_dest)]

        # Everything is staged next to its final location first, so a failure
        # leaves any previous copy of this identity untouched.
        try:
            self.packages_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(artifact_source, partial_path)
            with open(partial_path, "rb+") as f:
                os.fsync(f.fileno())
            has_docs = self._stage_extra(docs_dest, docs_source)
            has_examples = self._stage_extra(examples_dest, examples_source)

            # Hash the staged copy so a source mutated mid-copy can't poison the record.
            checksum, size = FileIntegrityChecker.compute_checksum(partial_path)
        except OSError as e:
            for path in staged:
                _discard(path)
            log.error(f"Failed to store files for {info.spec}: {e}")
            raise StorageError(f"Failed to store files for {info.spec}: {e}") from e

        try:
            os.replace(partial_path, artifact_path)
            # A re-add with a different archive type leaves the old file behind.
            for stale in self.packages_dir.glob(f"{record_id}*"):
                if stale != artifact_path:
                    _delete_path(stale)
            docs_path = self._commit_extra(docs_dest, has_docs)
            examples_path = self._commit_extra(examples_dest, has_examples)
        except OSError as e:
            for path in staged:
                _discard(path)
            log.error(f"Failed to store files for {info.spec}: {e}")
            raise StorageError(f"Failed to store files for {info.spec}: {e}") from e

        return PackageRecord(
            **info.model_dump(include=set(PackageInfo.model_fields)),
            id=record_id,
            cached_at=utc_now(),
            size=size,
            checksum=checksum,
            artifact_path=str(artifact_path),
            docs_path=str(docs_path) if docs_path else None,
            examples_path=str(examples_path) if examples_path else None,
        )

    @staticmethod
    def _stage_extra(destination: Path, source: Path | None) -> bool:
        """Copies a docs/examples source beside its destination. A missing source is skipped."""
        staging = _partial(destination)
        _delete_path(staging)
        if source is None or not source.exists():
            if source is not None:
                log.debug(f"Optional source '{source}' does not exist, skipping.")
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        _copy_path(source, staging)
        return True

    @staticmethod
    def _commit_extra(destination: Path, staged: bool) -> Path | None:
        _delete_path(destination)
        if not staged:
            return None
        os.replace(_partial(destination), destination)
        return destination

    async def add(
        self,
        info: PackageInfo,
        artifact_source: Path | str,
        docs_source: Path | str | None = None,
        examples_source: Path | str | None = None,
    ) -> str:
        """
        Adds a package to the store, replacing any previous copy of the same identity.

        Args:
            info: Registry metadata for the package.
            artifact_source: Path to the downloaded artifact.
            docs_source: Optional documentation file or directory.
            examples_source: Optional examples file or directory.

        Returns:
            The deterministic id of the stored package.

        Raises:
            StorageError: If the artifact is missing or files cannot be written.
        """
        record = await asyncio.to_thread(
            self._store_files_sync,
            info,
            Path(artifact_source),
            Path(docs_source) if docs_source else None,
            Path(examples_source) if examples_source else None,
        )
        await self.metadata.save(record)
        log.debug(f"Cached {record.spec} ({record.manager.value}) as {record.id}.")
        return record.id

    async def get(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> PackageRecord | None:
        return await self.metadata.get(name, version, manager)

    async def list(self) -> List[PackageRecord]:
        return await self.metadata.list()

    async def search(self, query: str) -> List[PackageRecord]:
        return await self.metadata.search(query)

    async def stats(self) -> CacheStats:
        return await self.metadata.stats()

    async def remove(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> bool:
        """
        Removes a package's files and its record.

        Files are deleted artifact first, then docs, then examples. A failed file
        delete is logged and the record is still removed; the leftover file becomes
        an orphan for `cleanup()` to reclaim.
        """
        record = await self.metadata.get(name, version, manager)
        if record is None:
            return False

        for label, path in (
            ("artifact", record.artifact_path),
            ("documentation", record.docs_path),
            ("examples", record.examples_path),
        ):
            if not path:
                continue
            try:
                await asyncio.to_thread(_delete_path, Path(path))
            except OSError as e:
                log.warning(f"[yellow]Could not delete {label} for {record.spec}: {e}[/yellow]")

        await self.metadata.remove(record.name, record.version, record.manager)
        return True

    async def exists(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> bool:
        """
        True only if a record exists and its artifact file is present on disk.

        This does not verify the checksum and does not repair stale records.
        """
        record = await self.metadata.get(name, version, manager)
        if record is None:
            return False
        return await asyncio.to_thread(os.path.isfile, record.artifact_path)

    async def verify(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> bool:
        """Re-hashes the stored artifact and compares it with the recorded checksum."""
        record = await self.metadata.get(name, version, manager)
        if record is None:
            return False
        return await asyncio.to_thread(
            FileIntegrityChecker.check_artifact, Path(record.artifact_path), record.checksum
        )

    async def get_size(self) -> int:
        """Total artifact bytes across all records. Docs and examples are not counted."""
        return sum(record.size for record in await self.metadata.list())

    def _cleanup_sync(self, known_ids: set[str]) -> CleanupReport:
        report = CleanupReport()
        for directory, counter in (
            (self.packages_dir, "artifacts_removed"),
            (self.docs_dir, "docs_removed"),
            (self.examples_dir, "examples_removed"),
        ):
            if not directory.is_dir():
                continue
            for entry in directory.iterdir():
                if entry.name.endswith(PARTIAL_SUFFIX):
                    attr = "partials_removed"
                elif _id_from_entry(entry) not in known_ids:
                    attr = counter
                else:
                    continue
                try:
                    _delete_path(entry)
                    setattr(report, attr, getattr(report, attr) + 1)
                except OSError as e:
                    log.warning(f"Failed to remove orphan '{entry}': {e}")
        return report

    async def cleanup(self) -> CleanupReport:
        """
        Deletes stored files that no record refers to.

        Records whose artifact is missing are left alone; `exists()` reports them.
        """
        known_ids = {record.id for record in await self.metadata.list()}
        report = await asyncio.to_thread(self._cleanup_sync, known_ids)
        if report.total:
            log.info(f"Cache cleanup: removed {report.total} orphaned entries.")
        else:
            log.debug("Cache cleanup: nothing to remove.")
        return report
