"""Tests for the SQLite metadata index."""

import asyncio
from datetime import datetime, timedelta, timezone

from zembil.models.package import PackageManager, PackageRecord, package_id, utc_now
from zembil.storage.metadata import MetadataStore


def make_record(
    name: str = "left-pad",
    version: str = "1.3.0",
    manager: PackageManager = PackageManager.NPM,
    cached_at: datetime | None = None,
    **extra,
) -> PackageRecord:
    return PackageRecord(
        id=package_id(name, version, manager),
        name=name,
        version=version,
        manager=manager,
        cached_at=cached_at or utc_now(),
        size=extra.pop("size", 100),
        checksum="0" * 64,
        artifact_path=f"/cache/packages/{name}-{version}.tgz",
        **extra,
    )


class TestMetadataStore:
    def test_save_and_get_round_trip(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.initialize()
            record = make_record(
                description="Pad strings on the left",
                dependencies={"a": "^1.0.0"},
                peer_dependencies={"b": "*"},
            )
            await store.save(record)
            return record, await store.get("left-pad", "1.3.0", PackageManager.NPM)

        saved, loaded = asyncio.run(run())
        assert loaded is not None
        assert loaded.id == saved.id
        assert loaded.dependencies == {"a": "^1.0.0"}
        assert loaded.peer_dependencies == {"b": "*"}
        assert loaded.dev_dependencies is None
        assert loaded.cached_at == saved.cached_at
        assert loaded.cached_at.tzinfo is not None

    def test_get_missing_returns_none(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            return await store.get("nope", "1.0.0")

        assert asyncio.run(run()) is None

    def test_save_replaces_same_identity(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record(size=1))
            await store.save(make_record(size=2))
            return await store.list()

        records = asyncio.run(run())
        assert len(records) == 1
        assert records[0].size == 2

    def test_get_without_manager_prefers_newest(self, tmp_path):
        older = utc_now() - timedelta(days=1)

        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record("shared", "1.0.0", PackageManager.PIP, cached_at=older))
            await store.save(make_record("shared", "1.0.0", PackageManager.NPM))
            return await store.get("shared", "1.0.0")

        assert asyncio.run(run()).manager == PackageManager.NPM

    def test_list_is_newest_first(self, tmp_path):
        now = utc_now()

        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            for offset, name in ((3, "a"), (1, "b"), (2, "c")):
                await store.save(make_record(name, cached_at=now - timedelta(hours=offset)))
            return [record.name for record in await store.list()]

        assert asyncio.run(run()) == ["b", "c", "a"]

    def test_search_matches_name_and_description_case_insensitively(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record("Lodash", description="Utility library"))
            await store.save(make_record("left-pad", description="String PADDING"))
            await store.save(make_record("express"))
            return (
                [r.name for r in await store.search("lodash")],
                [r.name for r in await store.search("padding")],
                await store.search("missing"),
            )

        by_name, by_description, none = asyncio.run(run())
        assert by_name == ["Lodash"]
        assert by_description == ["left-pad"]
        assert none == []

    def test_search_treats_wildcards_literally(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record("snake_case"))
            await store.save(make_record("snakecase"))
            await store.save(make_record("percent"))
            return (
                [r.name for r in await store.search("_")],
                await store.search("%"),
            )

        underscore, percent = asyncio.run(run())
        assert underscore == ["snake_case"]
        assert percent == []

    def test_remove_reports_deleted_rows(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record())
            first = await store.remove("left-pad", "1.3.0", PackageManager.NPM)
            second = await store.remove("left-pad", "1.3.0", PackageManager.NPM)
            return first, second, await store.get("left-pad", "1.3.0")

        first, second, remaining = asyncio.run(run())
        assert first == 1
        assert second == 0
        assert remaining is None

    def test_stats_on_empty_store(self, tmp_path):
        before = datetime.now(timezone.utc)

        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.initialize()
            return await store.stats()

        stats = asyncio.run(run())
        assert stats.total_packages == 0
        assert stats.total_size == 0
        assert stats.oldest_cache >= before
        assert stats.newest_cache >= before

    def test_stats_aggregates_records(self, tmp_path):
        now = utc_now()

        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record("a", size=10, cached_at=now - timedelta(hours=2)))
            await store.save(make_record("b", size=32, cached_at=now))
            return await store.stats()

        stats = asyncio.run(run())
        assert stats.total_packages == 2
        assert stats.total_size == 42
        assert stats.oldest_cache == now - timedelta(hours=2)
        assert stats.newest_cache == now

    def test_vacuum_keeps_data(self, tmp_path):
        async def run():
            store = MetadataStore(tmp_path / "cache.db")
            await store.save(make_record())
            await store.vacuum()
            return await store.list()

        assert len(asyncio.run(run())) == 1
