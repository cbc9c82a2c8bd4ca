import json
import pytest

from server.caching import CacheManager, SnapshotStore, SCHEMA_VERSION


class MutableClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSnapshotStore:
    """Durable snapshot storage."""

    def test_missing_file_is_a_miss(self, store):
        result = store.load()
        assert not result.ok
        assert result.reason == "no cached snapshot"

    def test_save_and_load(self, store, snapshot):
        assert store.save(snapshot).ok
        result = store.load()
        assert result.ok
        assert result.source == "disk"
        assert result.snapshot == snapshot

    def test_file_layout(self, store, snapshot):
        store.save(snapshot)
        entry = json.loads(store.data_file.read_text(encoding="utf-8"))
        assert entry["schema_version"] == SCHEMA_VERSION
        assert "saved_at" in entry
        assert [c["name"] for c in entry["snapshot"]["categories"]] == ["Database", "Hosting", "Email"]

    def test_stale_entry_is_a_miss(self, tmp_path, snapshot):
        clock = MutableClock()
        store = SnapshotStore(tmp_path, ttl_hours=24, clock=clock)
        store.save(snapshot)

        clock.now += 23 * 3600
        assert store.load().ok

        clock.now += 2 * 3600
        result = store.load()
        assert not result.ok
        assert "stale" in result.reason

    def test_schema_mismatch_is_a_miss(self, tmp_path, snapshot):
        SnapshotStore(tmp_path).save(snapshot)
        result = SnapshotStore(tmp_path, schema_version="2.0.0").load()
        assert not result.ok
        assert "schema version mismatch" in result.reason

    def test_corrupt_file_is_a_miss(self, store):
        store.cache_dir.mkdir(parents=True)
        store.data_file.write_text("{not json", encoding="utf-8")
        result = store.load()
        assert not result.ok
        assert result.reason.startswith("unreadable cache")

    def test_non_object_entry_is_a_miss(self, store):
        store.cache_dir.mkdir(parents=True)
        store.data_file.write_text("[1, 2, 3]", encoding="utf-8")
        assert not store.load().ok

    def test_save_failure_is_reported(self, tmp_path, snapshot):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        result = SnapshotStore(blocker / "cache").save(snapshot)
        assert not result.ok
        assert result.reason

    def test_clear(self, store, snapshot):
        store.save(snapshot)
        assert store.clear()
        assert not store.data_file.exists()
        # Clearing twice is fine
        assert store.clear()


class TestCacheManager:
    """Memory layer in front of the durable store."""

    @pytest.mark.asyncio
    async def test_memory_hit_after_save(self, cache_manager, snapshot):
        await cache_manager.save(snapshot)
        result = await cache_manager.load()
        assert result.ok
        assert result.source == "memory"

    @pytest.mark.asyncio
    async def test_disk_hit_repopulates_memory(self, store, snapshot):
        store.save(snapshot)
        manager = CacheManager(store)

        first = await manager.load()
        assert first.source == "disk"
        assert first.snapshot == snapshot

        second = await manager.load()
        assert second.source == "memory"

    @pytest.mark.asyncio
    async def test_miss(self, cache_manager):
        result = await cache_manager.load()
        assert not result.ok

    @pytest.mark.asyncio
    async def test_clear(self, cache_manager, store, snapshot):
        await cache_manager.save(snapshot)
        await cache_manager.clear()
        assert not (await cache_manager.load()).ok
        assert not store.data_file.exists()

    @pytest.mark.asyncio
    async def test_save_failure_keeps_memory_copy(self, tmp_path, snapshot):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        manager = CacheManager(SnapshotStore(blocker / "cache"))

        result = await manager.save(snapshot)
        assert not result.ok
        assert (await manager.load()).source == "memory"

    def test_stats(self, cache_manager, store):
        stats = cache_manager.stats()
        assert stats["memory_cache_size"] == 0
        assert stats["cache_dir"] == str(store.cache_dir)
