"""End-to-end tests for the Zembil facade using an in-memory package source."""

import asyncio

import pytest

from zembil.core.zembil import Zembil
from zembil.exceptions import DuplicateError, NotFoundError
from zembil.models.package import PackageManager
from zembil.models.queue import QueueStatus


class TestZembil:
    def test_queue_sync_install(self, config, registry, stub_source, tmp_path):
        stub_source.publish("left-pad", "1.3.0", content=b"pad", docs="# left-pad")
        target = tmp_path / "project"

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            result = await zembil.sync()
            installed = await zembil.install("left-pad", target)
            await zembil.close()
            return result, installed

        result, installed = asyncio.run(run())
        assert result.downloaded == 1
        assert installed == target / "left-pad-1.3.0.tgz"
        assert installed.read_bytes() == b"pad"
        assert stub_source.closed

    def test_initialize_creates_layout(self, config, registry):
        async def run():
            await Zembil(config, registry).initialize()

        asyncio.run(run())
        for name in ("packages", "docs", "examples", "temp", "cache.db", "queue.json"):
            assert (config.cache_dir / name).exists()

    def test_install_without_version_picks_highest(self, config, registry, stub_source, tmp_path):
        for version in ("1.9.0", "1.10.0", "1.2.0"):
            stub_source.publish("lib", version, content=version.encode())

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            for version in ("1.9.0", "1.10.0", "1.2.0"):
                await zembil.add_to_queue("lib", version, "npm")
            await zembil.sync()
            record = await zembil.find_cached_package("lib")
            installed = await zembil.install("lib", tmp_path / "out")
            return record, installed

        record, installed = asyncio.run(run())
        assert record.version == "1.10.0"
        assert installed.read_bytes() == b"1.10.0"

    def test_release_outranks_its_release_candidate(self, config, registry, stub_source):
        for version in ("2.0.0-rc.1", "2.0.0", "1.9.3"):
            stub_source.publish("lib", version)

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            for version in ("2.0.0-rc.1", "2.0.0", "1.9.3"):
                await zembil.add_to_queue("lib", version, "npm")
            await zembil.sync()
            return await zembil.find_cached_package("lib", manager="npm")

        assert asyncio.run(run()).version == "2.0.0"

    def test_unparseable_versions_still_pick_a_highest(self, config, registry, stub_source):
        for version in ("1.0-SNAPSHOT", "1.2-SNAPSHOT", "1.10-SNAPSHOT"):
            stub_source.publish("lib", version)

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            for version in ("1.0-SNAPSHOT", "1.2-SNAPSHOT", "1.10-SNAPSHOT"):
                await zembil.add_to_queue("lib", version, "npm")
            await zembil.sync()
            return await zembil.find_cached_package("lib")

        assert asyncio.run(run()).version == "1.10-SNAPSHOT"

    def test_install_of_uncached_package_fails(self, config, registry, tmp_path):
        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            with pytest.raises(NotFoundError):
                await zembil.install("ghost", tmp_path / "out")
            with pytest.raises(NotFoundError):
                await zembil.install("ghost", tmp_path / "out", version="1.0.0")

        asyncio.run(run())

    def test_install_with_missing_artifact_fails(self, config, registry, stub_source, tmp_path):
        stub_source.publish("left-pad", "1.3.0")

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            await zembil.sync()
            record = await zembil.find_cached_package("left-pad", "1.3.0")
            (config.cache_dir / "packages" / f"{record.id}.tgz").unlink()
            with pytest.raises(NotFoundError):
                await zembil.install("left-pad", tmp_path / "out", version="1.3.0")

        asyncio.run(run())

    def test_documentation_and_examples(self, config, registry, stub_source):
        examples = [f"example {n}" for n in range(1, 12)]
        stub_source.publish("left-pad", "1.3.0", docs="# Docs", examples=examples)
        stub_source.publish("bare", "1.0.0")

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            await zembil.add_to_queue("bare", "1.0.0", "npm")
            await zembil.sync()
            return (
                await zembil.get_documentation("left-pad"),
                await zembil.get_examples("left-pad", "1.3.0"),
                await zembil.get_documentation("bare"),
                await zembil.get_examples("bare"),
                await zembil.get_documentation("ghost"),
            )

        docs, cached_examples, bare_docs, bare_examples, ghost_docs = asyncio.run(run())
        assert docs == "# Docs"
        # example-10 and example-11 come after example-9.
        assert cached_examples == examples
        assert bare_docs is None
        assert bare_examples == []
        assert ghost_docs is None

    def test_offline_mode_skips_sync(self, config, registry, stub_source):
        config.offline_mode = True
        stub_source.publish("left-pad", "1.3.0")

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            result = await zembil.sync()
            return result, await zembil.queue.get_status()

        result, status = asyncio.run(run())
        assert result.downloaded == 0
        assert result.failed == 0
        assert status.pending == 1
        assert stub_source.downloaded == []

    def test_interrupted_entries_resume_on_initialize(self, config, registry, stub_source):
        stub_source.publish("left-pad", "1.3.0")

        async def interrupted():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            entry_id = await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            zembil.queue._entries[0].status = QueueStatus.DOWNLOADING
            await zembil.queue._persist()
            return entry_id

        async def resumed(entry_id):
            zembil = Zembil(config, registry)
            await zembil.initialize()
            before = await zembil.queue.get(entry_id)
            result = await zembil.sync()
            return before, result

        entry_id = asyncio.run(interrupted())
        before, result = asyncio.run(resumed(entry_id))
        assert before.status == QueueStatus.PENDING
        assert result.downloaded == 1

    def test_duplicate_queue_request(self, config, registry):
        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", PackageManager.NPM)
            with pytest.raises(DuplicateError):
                await zembil.add_to_queue("left-pad", "1.3.0", "npm")

        asyncio.run(run())

    def test_json_event_log(self, config, registry, stub_source):
        config.json_logs = True
        stub_source.publish("left-pad", "1.3.0")

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            await zembil.add_to_queue("left-pad", "1.3.0", "npm")
            await zembil.sync()

        asyncio.run(run())
        log_files = list(config.log_dir.glob("zembil_*.jsonl"))
        assert len(log_files) == 1
        events = log_files[0].read_text().splitlines()
        assert any('"item_completed"' in line for line in events)
        assert any('"sync_completed"' in line for line in events)

    def test_list_versions_and_stats(self, config, registry, stub_source):
        stub_source.publish("lib", "1.0.0", content=b"12")
        stub_source.publish("lib", "2.0.0", content=b"345")

        async def run():
            zembil = Zembil(config, registry)
            await zembil.initialize()
            versions = await zembil.list_versions("lib", "npm")
            await zembil.add_to_queue("lib", "1.0.0", "npm")
            await zembil.add_to_queue("lib", "2.0.0", "npm")
            await zembil.sync()
            return versions, await zembil.get_stats()

        versions, stats = asyncio.run(run())
        assert versions == ["1.0.0", "2.0.0"]
        assert stats.total_packages == 2
        assert stats.total_size == 5
