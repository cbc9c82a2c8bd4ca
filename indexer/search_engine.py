"""Search engine over a catalog snapshot.

Evaluation order for a query: category filter, tag filter, fuzzy ranking
(with a literal substring fallback), then ``limit``. Results are memoized
per ``(query, category, sorted tags, limit)`` until they expire, get
evicted, or the index is rebuilt.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from observability.prometheus_metrics import record_cache_lookup
from pipelines.errors import IndexNotReadyError
from pipelines.models import ServiceRecord

from .fuzzy import FIELD_WEIGHTS, MATCH_THRESHOLD, FieldMatch, FuzzyIndex
from .memory_cache import CacheKey, MemoryCache

logger = logging.getLogger(__name__)

BEST_SCORE = 0.0
# Every fallback hit gets the same score; relative relevance is not kept.
FALLBACK_SCORE = 0.5
DEFAULT_LIMIT = 10

CATEGORY_MATCH_POINTS = 2
SHARED_TAG_POINTS = 3


@dataclass(frozen=True)
class SearchQuery:
    """Caller-supplied filters and free text."""
    query: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    limit: int = DEFAULT_LIMIT

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError(f"limit must be positive, got {self.limit}")
        if self.tags is not None and not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def cache_key(self) -> str:
        return CacheKey.search_results(self.query, self.category, self.tags, self.limit)


@dataclass(frozen=True)
class SearchResult:
    """A ranked record; lower ``score`` is a better match."""
    record: ServiceRecord
    score: float
    matches: Optional[Tuple[FieldMatch, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"service": self.record.to_dict(), "score": self.score}
        if self.matches:
            result["matches"] = [m.to_dict() for m in self.matches]
        return result


@dataclass(frozen=True)
class _IndexState:
    services: Tuple[ServiceRecord, ...]
    index: FuzzyIndex


class SearchEngine:
    """Fuzzy, filterable, memoized search over service records."""

    def __init__(self,
                 cache_size: int = 100,
                 cache_ttl: float = 300,
                 weights: Tuple[Tuple[str, float], ...] = FIELD_WEIGHTS,
                 threshold: float = MATCH_THRESHOLD):
        """Initialize search engine.

        Args:
            cache_size: Maximum number of memoized queries
            cache_ttl: Seconds a memoized result stays valid
            weights: Field weights for fuzzy ranking
            threshold: Minimum token similarity for a fuzzy match
        """
        self.weights = weights
        self.threshold = threshold
        self._cache = MemoryCache(max_size=cache_size, ttl=cache_ttl)
        self._state: Optional[_IndexState] = None

    @property
    def is_ready(self) -> bool:
        return self._state is not None

    def build_index(self, services: Sequence[ServiceRecord]) -> None:
        """Replace the index with one built over ``services``.

        The new index is built completely before it is published, and the
        result cache is cleared so no result from the previous snapshot is
        served afterwards.
        """
        services = tuple(services)
        state = _IndexState(services=services,
                            index=FuzzyIndex(services, self.weights, self.threshold))
        self._state = state
        self.invalidate_cache()
        logger.info(f"Search index built over {len(services)} services "
                    f"({len(state.index.vocabulary)} distinct terms)")

    def _require_state(self) -> _IndexState:
        if self._state is None:
            raise IndexNotReadyError("Search engine not initialized")
        return self._state

    def invalidate_cache(self) -> None:
        self._cache.clear()

    def search(self, query: SearchQuery) -> List[SearchResult]:
        """Run a query through the filter/rank pipeline."""
        state = self._require_state()

        cache_key = query.cache_key
        cached = self._cache.get(cache_key)
        record_cache_lookup("search", hit=cached is not None)
        if cached is not None:
            return list(cached)

        positions = self._filter(state.services, query)
        text = (query.query or "").strip()
        if text:
            results = self._rank(state, positions, text)
        else:
            results = [SearchResult(state.services[p], BEST_SCORE) for p in positions]

        # Truncate only after filtering and ranking have seen every candidate.
        results = results[:query.limit]
        self._cache.set(cache_key, tuple(results))
        return results

    def _filter(self, services: Sequence[ServiceRecord], query: SearchQuery) -> List[int]:
        positions = list(range(len(services)))

        if query.category:
            wanted = query.category.lower()
            positions = [p for p in positions
                         if services[p].category.lower() == wanted
                         or wanted in services[p].category.lower()]

        if query.tags:
            wanted_tags = {tag.lower() for tag in query.tags}
            positions = [p for p in positions
                         if services[p].tags
                         and any(tag.lower() in wanted_tags for tag in services[p].tags)]

        return positions

    def _rank(self, state: _IndexState, positions: List[int], text: str) -> List[SearchResult]:
        fuzzy_matches = state.index.search(text, positions)
        if fuzzy_matches:
            return [SearchResult(state.services[m.position], m.distance, m.matches)
                    for m in fuzzy_matches]

        logger.debug(f"No fuzzy matches for {text!r}, falling back to substring search")
        terms = [term for term in text.lower().split() if term]
        results = []
        for p in positions:
            service = state.services[p]
            haystack = " ".join([
                service.name,
                service.description,
                service.free_tier,
                service.category,
                service.limitations or "",
                " ".join(service.tags or ()),
            ]).lower()
            if any(term in haystack for term in terms):
                results.append(SearchResult(service, FALLBACK_SCORE))
        return results

    def similar(self, record: ServiceRecord, limit: int = 5) -> List[ServiceRecord]:
        """Records related to ``record`` by category and shared tags.

        Exclusion is by display name, so distinct entries that share
        ``record.name`` are excluded too.
        """
        services = self._require_state().services

        if not record.tags:
            return [s for s in services
                    if s.category == record.category and s.name != record.name][:limit]

        source_tags = set(record.tags)
        scored = []
        for service in services:
            if service.name == record.name:
                continue
            score = CATEGORY_MATCH_POINTS if service.category == record.category else 0
            score += SHARED_TAG_POINTS * len(source_tags.intersection(service.tags or ()))
            if score > 0:
                scored.append((score, service))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [service for _, service in scored[:limit]]

    def stats(self) -> Dict[str, int]:
        return {
            "record_count": len(self._state.services) if self._state else 0,
            "cache_entries": self._cache.size(),
            "cache_capacity": self._cache.max_size,
        }
