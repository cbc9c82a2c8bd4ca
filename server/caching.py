"""Snapshot caching for the free-tier catalog.

Two layers: a short-lived in-memory cache checked first, and a durable JSON
file consulted on a miss. A durable hit repopulates the memory layer.
Storage failures never raise; they come back as unsuccessful results so the
caller can decide to fetch a fresh copy instead.
"""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from indexer.memory_cache import CacheKey, MemoryCache
from observability.prometheus_metrics import record_cache_lookup, record_error
from pipelines.models import CatalogSnapshot

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
DATA_FILE_NAME = "data.json"
SNAPSHOT_KEY = CacheKey.snapshot()


@dataclass(frozen=True)
class LoadResult:
    """Outcome of a snapshot lookup: a snapshot and where it came from, or why not."""
    snapshot: Optional[CatalogSnapshot] = None
    source: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None

    @classmethod
    def hit(cls, snapshot: CatalogSnapshot, source: str) -> "LoadResult":
        return cls(snapshot=snapshot, source=source)

    @classmethod
    def miss(cls, reason: str) -> "LoadResult":
        return cls(reason=reason)


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    reason: Optional[str] = None


class SnapshotStore:
    """Durable snapshot storage in a single JSON file."""

    def __init__(self, cache_dir: Union[str, Path], ttl_hours: float = 24,
                 schema_version: str = SCHEMA_VERSION, clock=time.time):
        """Initialize store.

        Args:
            cache_dir: Directory holding the data file
            ttl_hours: Age after which a stored snapshot is treated as absent
            schema_version: Version tag written with, and required of, entries
            clock: Wall clock returning epoch seconds
        """
        self.cache_dir = Path(cache_dir)
        self.data_file = self.cache_dir / DATA_FILE_NAME
        self.ttl_seconds = ttl_hours * 3600
        self.schema_version = schema_version
        self._clock = clock

    def _saved_at(self, entry: Dict[str, Any]) -> float:
        saved_at = entry.get("saved_at")
        if saved_at:
            return datetime.fromisoformat(saved_at).timestamp()
        return self.data_file.stat().st_mtime

    def load(self) -> LoadResult:
        """Load the stored snapshot if present, current and readable."""
        if not self.data_file.exists():
            return LoadResult.miss("no cached snapshot")

        try:
            entry = json.loads(self.data_file.read_text(encoding="utf-8"))
            if not isinstance(entry, dict):
                return LoadResult.miss("cache entry is not an object")

            version = entry.get("schema_version")
            if version != self.schema_version:
                return LoadResult.miss(f"schema version mismatch ({version} != {self.schema_version})")

            age_seconds = self._clock() - self._saved_at(entry)
            if age_seconds > self.ttl_seconds:
                return LoadResult.miss(f"cache is stale ({age_seconds / 3600:.1f}h old)")

            snapshot = CatalogSnapshot.from_dict(entry["snapshot"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load cache from {self.data_file}: {e}")
            return LoadResult.miss(f"unreadable cache: {e}")

        return LoadResult.hit(snapshot, "disk")

    def save(self, snapshot: CatalogSnapshot) -> SaveResult:
        """Write the snapshot atomically."""
        entry = {
            "schema_version": self.schema_version,
            "saved_at": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
            "snapshot": snapshot.to_dict(),
        }
        tmp_file = self.data_file.with_suffix(".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(json.dumps(entry, indent=2), encoding="utf-8")
            os.replace(tmp_file, self.data_file)
        except OSError as e:
            logger.warning(f"Failed to save cache to {self.data_file}: {e}")
            return SaveResult(ok=False, reason=str(e))
        return SaveResult(ok=True)

    def clear(self) -> bool:
        try:
            self.data_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove cache file {self.data_file}: {e}")
            return False
        return True


class CacheManager:
    """In-memory layer in front of a durable snapshot store."""

    def __init__(self, store: SnapshotStore, memory_ttl: float = 600, memory_size: int = 50):
        self.store = store
        self.memory_cache = MemoryCache(max_size=memory_size, ttl=memory_ttl)

    async def load(self) -> LoadResult:
        """Return the cached snapshot, checking memory before durable storage."""
        snapshot = self.memory_cache.get(SNAPSHOT_KEY)
        record_cache_lookup("snapshot_memory", hit=snapshot is not None)
        if snapshot is not None:
            return LoadResult.hit(snapshot, "memory")

        result = await asyncio.to_thread(self.store.load)
        record_cache_lookup("snapshot_disk", hit=result.ok)
        if result.ok:
            self.memory_cache.set(SNAPSHOT_KEY, result.snapshot)
        else:
            logger.info(f"No usable cached snapshot: {result.reason}")
        return result

    async def save(self, snapshot: CatalogSnapshot) -> SaveResult:
        self.memory_cache.set(SNAPSHOT_KEY, snapshot)
        result = await asyncio.to_thread(self.store.save, snapshot)
        if not result.ok:
            record_error("cache_write_error", "cache")
        return result

    async def clear(self) -> None:
        self.memory_cache.clear()
        await asyncio.to_thread(self.store.clear)

    def stats(self) -> Dict[str, Any]:
        return {
            "memory_cache_size": self.memory_cache.size(),
            "memory_cache_capacity": self.memory_cache.max_size,
            "cache_dir": str(self.store.cache_dir),
        }
