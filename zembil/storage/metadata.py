"""
Manages the SQLite database that indexes every cached package record.
"""

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

from zembil.exceptions import StorageError
from zembil.models.package import PackageManager, PackageRecord, utc_now
from zembil.models.stats import CacheStats

log = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "name",
    "version",
    "manager",
    "description",
    "homepage",
    "repository",
    "license",
    "dependencies",
    "dev_dependencies",
    "peer_dependencies",
    "cached_at",
    "size",
    "checksum",
    "artifact_path",
    "docs_path",
    "examples_path",
)
_JSON_COLUMNS = ("dependencies", "dev_dependencies", "peer_dependencies")


def _to_db_time(value: datetime) -> str:
    # Fixed-width UTC strings sort chronologically, which ORDER BY relies on.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MetadataStore:
    """
    A SQLite index of cached package records keyed by (name, version, manager).

    Every write is committed with synchronous=FULL before the call returns, so a
    power loss never leaves the index behind the files it describes.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._initialized = False

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Opens a connection with durable PRAGMA settings and always closes it."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            log.error(f"Failed to connect to metadata database: {e}")
            raise StorageError(f"Cannot open metadata database '{self.db_path}': {e}") from e
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=FULL;")
            yield conn
        finally:
            conn.close()

    def _initialize_sync(self) -> None:
        """Creates the table and indexes if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS packages (
                        id TEXT PRIMARY KEY NOT NULL,
                        name TEXT NOT NULL,
                        version TEXT NOT NULL,
                        manager TEXT NOT NULL,
                        description TEXT,
                        homepage TEXT,
                        repository TEXT,
                        license TEXT,
                        dependencies TEXT,
                        dev_dependencies TEXT,
                        peer_dependencies TEXT,
                        cached_at TEXT NOT NULL,
                        size INTEGER NOT NULL,
                        checksum TEXT NOT NULL,
                        artifact_path TEXT NOT NULL,
                        docs_path TEXT,
                        examples_path TEXT,
                        UNIQUE(name, version, manager)
                    );
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_name ON packages(name);")
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_cached_at ON packages(cached_at);"
                )
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            log.error(f"Failed to initialize metadata database at '{self.db_path}': {e}")
            raise StorageError(f"Failed to initialize metadata database: {e}") from e
        self._initialized = True

    def _ensure_schema(self) -> None:
        if not self._initialized:
            self._initialize_sync()

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function in a worker thread."""
        return await asyncio.to_thread(func, *args)

    async def initialize(self) -> None:
        """Creates the schema. Safe to call any number of times."""
        await self._run_in_executor(self._initialize_sync)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PackageRecord:
        data: dict[str, Any] = dict(row)
        for column in _JSON_COLUMNS:
            data[column] = json.loads(data[column]) if data[column] else None
        data["cached_at"] = _from_db_time(data["cached_at"])
        return PackageRecord(**data)

    @staticmethod
    def _record_to_row(record: PackageRecord) -> tuple:
        values = record.model_dump()
        for column in _JSON_COLUMNS:
            values[column] = json.dumps(values[column]) if values[column] else None
        values["manager"] = record.manager.value
        values["cached_at"] = _to_db_time(record.cached_at)
        return tuple(values[column] for column in _COLUMNS)

    def _fetch_sync(self, query: str, params: tuple = ()) -> list[PackageRecord]:
        self._ensure_schema()
        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
            return [self._row_to_record(row) for row in rows]
        except sqlite3.Error as e:
            log.error(f"Metadata query failed: {e}")
            raise StorageError(f"Metadata query failed: {e}") from e

    def _save_sync(self, record: PackageRecord) -> None:
        self._ensure_schema()
        placeholders = ", ".join("?" * len(_COLUMNS))
        try:
            with self._get_connection() as conn:
                # Replace on either the id or the (name, version, manager) key.
                conn.execute(
                    f"INSERT OR REPLACE INTO packages ({', '.join(_COLUMNS)}) "  # noqa: S608
                    f"VALUES ({placeholders})",
                    self._record_to_row(record),
                )
                conn.commit()
        except sqlite3.Error as e:
            log.error(f"Failed to save metadata for {record.spec}: {e}")
            raise StorageError(f"Failed to save metadata for {record.spec}: {e}") from e

    async def save(self, record: PackageRecord) -> None:
        """Inserts or fully replaces the record with the same identity."""
        await self._run_in_executor(self._save_sync, record)

    async def get(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> PackageRecord | None:
        """
        Looks up a record by identity.

        Without a manager, the most recently cached record for name@version wins.
        """
        if manager is None:
            query = (
                "SELECT * FROM packages WHERE name = ? AND version = ? "
                "ORDER BY cached_at DESC LIMIT 1"
            )
            params: tuple = (name, version)
        else:
            query = "SELECT * FROM packages WHERE name = ? AND version = ? AND manager = ?"
            params = (name, version, PackageManager(manager).value)
        records = await self._run_in_executor(self._fetch_sync, query, params)
        return records[0] if records else None

    async def list(self) -> List[PackageRecord]:
        """Returns all records, newest first."""
        return await self._run_in_executor(
            self._fetch_sync, "SELECT * FROM packages ORDER BY cached_at DESC"
        )

    async def list_by_name(self, name: str) -> List[PackageRecord]:
        """Returns every cached version of a package, newest first."""
        return await self._run_in_executor(
            self._fetch_sync,
            "SELECT * FROM packages WHERE name = ? ORDER BY cached_at DESC",
            (name,),
        )

    def _remove_sync(self, name: str, version: str, manager: PackageManager | None) -> int:
        self._ensure_schema()
        if manager is None:
            query = "DELETE FROM packages WHERE name = ? AND version = ?"
            params: tuple = (name, version)
        else:
            query = "DELETE FROM packages WHERE name = ? AND version = ? AND manager = ?"
            params = (name, version, PackageManager(manager).value)
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            log.error(f"Failed to remove metadata for {name}@{version}: {e}")
            raise StorageError(f"Failed to remove metadata for {name}@{version}: {e}") from e

    async def remove(
        self, name: str, version: str, manager: PackageManager | None = None
    ) -> int:
        """Deletes matching records. Removing an absent record is not an error."""
        return await self._run_in_executor(self._remove_sync, name, version, manager)

    async def search(self, query: str) -> List[PackageRecord]:
        """Case-insensitive substring search over name and description."""
        pattern = f"%{_escape_like(query.lower())}%"
        return await self._run_in_executor(
            self._fetch_sync,
            "SELECT * FROM packages "
            "WHERE LOWER(name) LIKE ? ESCAPE '\\' "
            "OR LOWER(COALESCE(description, '')) LIKE ? ESCAPE '\\' "
            "ORDER BY name, version",
            (pattern, pattern),
        )

    def _stats_sync(self) -> CacheStats:
        self._ensure_schema()
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT
                        COUNT(*) AS total_packages,
                        COALESCE(SUM(size), 0) AS total_size,
                        MIN(cached_at) AS oldest_cache,
                        MAX(cached_at) AS newest_cache
                    FROM packages
                    """
                ).fetchone()
        except sqlite3.Error as e:
            log.error(f"Failed to get metadata stats: {e}")
            raise StorageError(f"Failed to get metadata stats: {e}") from e

        now = utc_now()
        return CacheStats(
            total_packages=row["total_packages"],
            total_size=row["total_size"],
            oldest_cache=_from_db_time(row["oldest_cache"]) if row["oldest_cache"] else now,
            newest_cache=_from_db_time(row["newest_cache"]) if row["newest_cache"] else now,
        )

    async def stats(self) -> CacheStats:
        """Count, total size and cached-at range; well-defined for an empty store."""
        return await self._run_in_executor(self._stats_sync)

    def _vacuum_sync(self) -> None:
        self._ensure_schema()
        try:
            with self._get_connection() as conn:
                conn.execute("VACUUM;")
                conn.execute("ANALYZE;")
                conn.commit()
            log.info("Metadata database optimized successfully.")
        except sqlite3.Error as e:
            log.error(f"Database vacuum failed: {e}")
            raise StorageError(f"Database vacuum failed: {e}") from e

    async def vacuum(self) -> None:
        """Optimizes the database file by rebuilding it."""
        await self._run_in_executor(self._vacuum_sync)
