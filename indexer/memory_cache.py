"""In-memory LRU cache with per-entry expiry, plus cache key helpers."""

import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional, Tuple

_MISSING = object()


class CacheKey:
    """Deterministic keys for memoized search results."""

    @staticmethod
    def search_results(query: Optional[str], category: Optional[str],
                       tags: Optional[Iterable[str]], limit: int) -> str:
        """Generate cache key for a search request.

        Tags are sorted so that their order never changes the key.
        """
        key_data = {
            "q": query or "",
            "c": category or "",
            "t": ",".join(sorted(tags or [])),
            "l": limit,
        }
        key_string = json.dumps(key_data, sort_keys=True)
        return f"search:{hashlib.md5(key_string.encode()).hexdigest()}"

    @staticmethod
    def snapshot(name: str = "parsed-data") -> str:
        return f"snapshot:{name}"


class MemoryCache:
    """In-memory LRU cache implementation.

    Entries expire after ``ttl`` seconds; once ``max_size`` entries are held
    the least recently used one is evicted to make room.
    """

    def __init__(self, max_size: int = 1000, ttl: Optional[float] = None, clock=time.monotonic):
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self.cache: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()  # key -> (value, expiry)
        self.hits = 0
        self.misses = 0

    def _expired(self, expiry_time: float) -> bool:
        return expiry_time <= self._clock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` and mark it most recently used."""
        entry = self.cache.get(key, _MISSING)
        if entry is _MISSING:
            self.misses += 1
            return default

        value, expiry_time = entry
        if self._expired(expiry_time):
            del self.cache[key]
            self.misses += 1
            return default

        self.cache.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set value in cache."""
        ttl = ttl if ttl is not None else self.ttl
        expiry_time = self._clock() + ttl if ttl else float("inf")

        if key in self.cache:
            self.cache.move_to_end(key)
        elif len(self.cache) >= self.max_size:
            self.cleanup_expired()
            while len(self.cache) >= self.max_size:
                self.cache.popitem(last=False)

        self.cache[key] = (value, expiry_time)

    def delete(self, key: str) -> bool:
        """Remove ``key``; True if it was present."""
        return self.cache.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        """Drop every entry; statistics are kept."""
        self.cache.clear()

    def cleanup_expired(self) -> int:
        """Evict entries past their TTL; returns how many went."""
        expired_keys = [key for key, (_, expiry_time) in self.cache.items()
                        if self._expired(expiry_time)]
        for key in expired_keys:
            del self.cache[key]
        return len(expired_keys)

    def size(self) -> int:
        """Get current cache size, not counting expired entries."""
        self.cleanup_expired()
        return len(self.cache)

    def stats(self) -> Dict[str, Any]:
        """Size, capacity, hit and miss counts, and fill ratio."""
        size = self.size()
        return {
            "size": size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "utilization": size / self.max_size if self.max_size > 0 else 0,
        }
