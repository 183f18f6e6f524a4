"""Tests for the durable download queue."""

import asyncio
import json

import pytest

from zembil.exceptions import DuplicateError, UnsupportedManagerError
from zembil.models.package import PackageManager
from zembil.models.queue import QUEUE_SCHEMA_VERSION, QueueStatus
from zembil.models.stats import ItemOutcome
from zembil.storage.queue import DownloadQueue


async def succeed(entry):
    return ItemOutcome(ok=True)


class TestQueueOperations:
    def test_add_and_list_orders_by_priority_then_age(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.initialize()
            await queue.add("low", "1.0.0", "npm")
            await queue.add("high", "1.0.0", "npm", priority=10)
            await queue.add("low-later", "1.0.0", "npm")
            await queue.add("mid", "1.0.0", PackageManager.PIP, priority=5)
            return [entry.package_name for entry in await queue.list()]

        assert asyncio.run(run()) == ["high", "mid", "low", "low-later"]

    def test_add_returns_unique_ids(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            first = await queue.add("a", "1.0.0", "npm")
            second = await queue.add("b", "1.0.0", "npm")
            return first, second, await queue.get(first)

        first, second, entry = asyncio.run(run())
        assert first != second
        assert entry.package_name == "a"
        assert entry.status == QueueStatus.PENDING
        assert entry.started_at is None

    def test_duplicate_pending_entry_is_rejected(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("left-pad", "1.3.0", "npm")
            with pytest.raises(DuplicateError):
                await queue.add("left-pad", "1.3.0", "npm")
            # Other versions and other managers are different packages.
            await queue.add("left-pad", "1.2.0", "npm")
            await queue.add("left-pad", "1.3.0", "pip")
            return await queue.list()

        assert len(asyncio.run(run())) == 3

    def test_completed_entry_can_be_requeued(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("left-pad", "1.3.0", "npm")
            await queue.process(succeed)
            await queue.add("left-pad", "1.3.0", "npm")
            return await queue.get_status()

        status = asyncio.run(run())
        assert status.completed == 1
        assert status.pending == 1

    def test_failed_entry_can_be_requeued(self, tmp_path):
        async def fail(entry):
            return ItemOutcome.failure(ConnectionError("registry unreachable"))

        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("left-pad", "1.3.0", "npm")
            await queue.process(fail)
            retry_id = await queue.add("left-pad", "1.3.0", "npm")
            return retry_id, await queue.list(), await queue.get_status()

        retry_id, entries, status = asyncio.run(run())
        assert status.failed == 1
        assert status.pending == 1
        by_status = {entry.status: entry for entry in entries}
        assert by_status[QueueStatus.PENDING].id == retry_id
        assert by_status[QueueStatus.FAILED].error == "registry unreachable"

    def test_unknown_manager_is_rejected(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            with pytest.raises(UnsupportedManagerError):
                await queue.add("wget", "1.0", "brew")
            return await queue.list()

        assert asyncio.run(run()) == []

    def test_remove_get_and_clear(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            keep = await queue.add("keep", "1.0.0", "npm")
            drop = await queue.add("drop", "1.0.0", "npm")
            removed = await queue.remove(drop)
            removed_again = await queue.remove(drop)
            missing = await queue.get(drop)
            kept = await queue.get(keep)
            await queue.clear()
            return removed, removed_again, missing, kept, await queue.list()

        removed, removed_again, missing, kept, after_clear = asyncio.run(run())
        assert removed is True
        assert removed_again is False
        assert missing is None
        assert kept.package_name == "keep"
        assert after_clear == []

    def test_returned_entries_are_copies(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            entry_id = await queue.add("a", "1.0.0", "npm")
            entry = await queue.get(entry_id)
            entry.status = QueueStatus.FAILED
            return await queue.get(entry_id)

        assert asyncio.run(run()).status == QueueStatus.PENDING

    def test_prune_removes_finished_entries(self, tmp_path):
        async def fail(entry):
            return ItemOutcome(ok=False, message="boom")

        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("done", "1.0.0", "npm")
            await queue.process(succeed)
            await queue.add("broken", "1.0.0", "npm")
            await queue.process(fail)
            await queue.add("waiting", "1.0.0", "npm")
            pruned = await queue.prune()
            pruned_failed = await queue.prune([QueueStatus.FAILED])
            return pruned, pruned_failed, [e.package_name for e in await queue.list()]

        pruned, pruned_failed, remaining = asyncio.run(run())
        assert pruned == 1
        assert pruned_failed == 1
        assert remaining == ["waiting"]


class TestQueuePersistence:
    def test_entries_survive_a_restart(self, tmp_path):
        path = tmp_path / "queue.json"

        async def first_session():
            queue = DownloadQueue(path)
            return await queue.add("left-pad", "1.3.0", "npm", priority=3)

        async def second_session():
            queue = DownloadQueue(path)
            await queue.initialize()
            return await queue.list()

        entry_id = asyncio.run(first_session())
        entries = asyncio.run(second_session())
        assert [(e.id, e.priority) for e in entries] == [(entry_id, 3)]

    def test_file_is_a_versioned_envelope(self, tmp_path):
        path = tmp_path / "queue.json"

        async def run():
            queue = DownloadQueue(path)
            await queue.add("left-pad", "1.3.0", "npm")

        asyncio.run(run())
        data = json.loads(path.read_text())
        assert data["schema_version"] == QUEUE_SCHEMA_VERSION
        assert data["entries"][0]["package_name"] == "left-pad"
        assert data["entries"][0]["manager"] == "npm"
        assert not list(tmp_path.glob("*.tmp"))

    def test_initialize_creates_an_empty_file(self, tmp_path):
        path = tmp_path / "nested" / "queue.json"

        async def run():
            await DownloadQueue(path).initialize()

        asyncio.run(run())
        assert json.loads(path.read_text())["entries"] == []

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            json.dumps({"schema_version": 1, "entries": [{"id": "x"}]}),
            json.dumps({"schema_version": QUEUE_SCHEMA_VERSION + 1, "entries": []}),
        ],
    )
    def test_unreadable_file_is_quarantined(self, tmp_path, content):
        path = tmp_path / "queue.json"
        path.write_text(content)

        async def run():
            queue = DownloadQueue(path)
            await queue.initialize()
            entries = await queue.list()
            await queue.add("fresh", "1.0.0", "npm")
            return entries

        assert asyncio.run(run()) == []
        assert (tmp_path / "queue.json.corrupt").read_text() == content
        assert json.loads(path.read_text())["entries"][0]["package_name"] == "fresh"

    def test_legacy_list_format_is_migrated(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "id": "legacy-1",
                        "packageName": "left-pad",
                        "version": "1.3.0",
                        "manager": "npm",
                        "priority": 2,
                        "status": "pending",
                        "queuedAt": "2024-01-01T00:00:00+00:00",
                    }
                ]
            )
        )

        async def run():
            queue = DownloadQueue(path)
            await queue.initialize()
            return await queue.list()

        entries = asyncio.run(run())
        assert len(entries) == 1
        assert entries[0].id == "legacy-1"
        assert entries[0].package_name == "left-pad"
        assert entries[0].priority == 2

    def test_recover_interrupted_resets_downloading_entries(self, tmp_path):
        path = tmp_path / "queue.json"

        async def interrupted_session():
            queue = DownloadQueue(path)
            entry_id = await queue.add("left-pad", "1.3.0", "npm")

            async def crash(entry):
                raise KeyboardInterrupt

            with pytest.raises(KeyboardInterrupt):
                await queue.process(crash)
            return entry_id

        async def next_session():
            queue = DownloadQueue(path)
            await queue.initialize()
            stuck = (await queue.get_status()).downloading
            recovered = await queue.recover_interrupted()
            return stuck, recovered, await queue.get_status()

        asyncio.run(interrupted_session())
        stuck, recovered, status = asyncio.run(next_session())
        assert stuck == 1
        assert recovered == 1
        assert status.pending == 1
        assert status.downloading == 0


class TestQueueProcessing:
    def test_process_drains_in_priority_order(self, tmp_path):
        seen = []

        async def handler(entry):
            seen.append(entry.package_name)
            assert entry.status == QueueStatus.DOWNLOADING
            assert entry.started_at is not None
            return ItemOutcome(ok=True)

        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("second", "1.0.0", "npm")
            await queue.add("first", "1.0.0", "npm", priority=1)
            result = await queue.process(handler)
            return result, await queue.list()

        result, entries = asyncio.run(run())
        assert seen == ["first", "second"]
        assert result.downloaded == 2
        assert result.failed == 0
        assert result.success
        assert all(e.status == QueueStatus.COMPLETED for e in entries)
        assert all(e.completed_at is not None for e in entries)

    def test_failures_do_not_stop_the_drain(self, tmp_path):
        async def handler(entry):
            if entry.package_name == "explodes":
                raise RuntimeError("kaboom")
            if entry.package_name == "missing":
                return ItemOutcome(ok=False, message="not found")
            return ItemOutcome(ok=True)

        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")
            await queue.add("explodes", "1.0.0", "npm", priority=3)
            await queue.add("missing", "1.0.0", "npm", priority=2)
            await queue.add("fine", "1.0.0", "npm", priority=1)
            result = await queue.process(handler)
            return result, {e.package_name: e for e in await queue.list()}

        result, entries = asyncio.run(run())
        assert result.downloaded == 1
        assert result.failed == 2
        assert not result.success
        assert result.errors == ["explodes@1.0.0: kaboom", "missing@1.0.0: not found"]
        assert entries["explodes"].status == QueueStatus.FAILED
        assert entries["explodes"].error == "kaboom"
        assert entries["fine"].status == QueueStatus.COMPLETED

    def test_entries_added_during_a_drain_wait_for_the_next_one(self, tmp_path):
        async def run():
            queue = DownloadQueue(tmp_path / "queue.json")

            async def handler(entry):
                if entry.package_name == "first":
                    await queue.add("late", "1.0.0", "npm", priority=100)
                return ItemOutcome(ok=True)

            await queue.add("first", "1.0.0", "npm")
            result = await queue.process(handler)
            return result, await queue.get_status()

        result, status = asyncio.run(run())
        assert result.downloaded == 1
        assert status.pending == 1

    def test_state_is_persisted_after_each_item(self, tmp_path):
        path = tmp_path / "queue.json"
        snapshots = []

        async def handler(entry):
            snapshots.append(json.loads(path.read_text())["entries"])
            return ItemOutcome(ok=True)

        async def run():
            queue = DownloadQueue(path)
            await queue.add("a", "1.0.0", "npm", priority=1)
            await queue.add("b", "1.0.0", "npm")
            await queue.process(handler)

        asyncio.run(run())
        first, second = snapshots
        assert [e["status"] for e in first] == ["downloading", "pending"]
        assert [e["status"] for e in second] == ["completed", "downloading"]

    def test_empty_queue_yields_empty_result(self, tmp_path):
        async def run():
            return await DownloadQueue(tmp_path / "queue.json").process(succeed)

        result = asyncio.run(run())
        assert result.downloaded == 0
        assert result.failed == 0
        assert result.errors == []
