"""Catalog service: owns the active snapshot and coordinates its collaborators.

The service composes a fetcher, a parser, a search engine and a cache
manager. Construct one per process and pass it to the transports.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from config.settings import CatalogConfig
from indexer.search_engine import SearchEngine, SearchQuery, SearchResult
from observability.logging import get_structured_logger, log_performance
from observability.prometheus_metrics import get_metrics_summary, record_catalog_load, record_search_metrics
from pipelines.catalog_parser import CatalogParser
from pipelines.errors import IndexNotReadyError
from pipelines.fetcher import ReadmeFetcher
from pipelines.models import CatalogSnapshot, ServiceRecord

from .caching import CacheManager, SnapshotStore

logger = logging.getLogger(__name__)
events = get_structured_logger(__name__, component="catalog")

POPULAR_CATEGORIES = ("APIs, Data, and ML", "Cloud Providers", "Hosting", "Database")


def popularity_score(service: ServiceRecord) -> float:
    """Heuristic completeness score used to rank "popular" services."""
    score = min(len(service.description) / 10, 20)
    if service.limitations:
        score += 10
    if service.tags:
        score += len(service.tags) * 5
    if any(category in service.category for category in POPULAR_CATEGORIES):
        score += 15
    return score


class CatalogService:
    """Holds one catalog snapshot and answers queries against it.

    ``refresh()`` is not re-entrant: callers must not start a second refresh
    while one is in flight.
    """

    def __init__(self,
                 fetcher: ReadmeFetcher,
                 cache_manager: CacheManager,
                 parser: Optional[CatalogParser] = None,
                 search_engine: Optional[SearchEngine] = None,
                 max_search_limit: int = 50):
        self.fetcher = fetcher
        self.cache_manager = cache_manager
        self.parser = parser or CatalogParser()
        self.search_engine = search_engine or SearchEngine()
        self.max_search_limit = max_search_limit
        self._snapshot: Optional[CatalogSnapshot] = None
        self._init_task: Optional[asyncio.Future] = None

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "CatalogService":
        fetcher = ReadmeFetcher(
            url=config.source_url,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries,
        )
        store = SnapshotStore(config.cache_dir, ttl_hours=config.durable_ttl_hours)
        cache_manager = CacheManager(store, memory_ttl=config.memory_ttl_seconds)
        search_engine = SearchEngine(
            cache_size=config.search_cache_size,
            cache_ttl=config.search_cache_ttl_seconds,
        )
        return cls(fetcher, cache_manager, search_engine=search_engine,
                   max_search_limit=config.max_search_limit)

    @property
    def snapshot(self) -> Optional[CatalogSnapshot]:
        return self._snapshot

    @property
    def is_initialized(self) -> bool:
        return self._snapshot is not None

    async def initialize(self) -> None:
        """Load the catalog from cache, or fetch and parse it. Idempotent.

        Concurrent callers share one in-flight load.
        """
        if self._snapshot is not None:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load_initial())
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _load_initial(self) -> None:
        cached = await self.cache_manager.load()
        if cached.ok:
            logger.info(f"Loading data from {cached.source} cache")
            self._publish(cached.snapshot, source=cached.source)
            return

        logger.info("Fetching fresh data")
        snapshot = await self._fetch_and_parse()
        await self.cache_manager.save(snapshot)
        self._publish(snapshot, source="network")

    async def refresh(self) -> CatalogSnapshot:
        """Replace the current snapshot with a freshly fetched one.

        On a fetch or parse failure the current snapshot stays in place.
        """
        logger.info("Refreshing data")
        snapshot = await self._fetch_and_parse()

        await self.cache_manager.clear()
        self.search_engine.invalidate_cache()
        await self.cache_manager.save(snapshot)

        self._publish(snapshot, source="network")
        return snapshot

    async def close(self) -> None:
        await self.fetcher.close()

    @log_performance(threshold_ms=5000)
    async def _fetch_and_parse(self) -> CatalogSnapshot:
        raw = await self.fetcher.fetch_raw()
        return self.parser.parse(raw)

    def _publish(self, snapshot: CatalogSnapshot, source: str) -> None:
        # The index is fully rebuilt before the snapshot pointer moves, and
        # nothing awaits in between, so readers never see a mixed state.
        self.search_engine.build_index(snapshot.services)
        self._snapshot = snapshot
        record_catalog_load(source, len(snapshot.services), len(snapshot.categories))
        events.info("Catalog published", source=source,
                    services=len(snapshot.services), categories=len(snapshot.categories))

    def _require_snapshot(self) -> CatalogSnapshot:
        if self._snapshot is None:
            raise IndexNotReadyError("Catalog not initialized. Call initialize() first.")
        return self._snapshot

    # Queries

    def semantic_search(self, query: Optional[str] = None, category: Optional[str] = None,
                        tags: Optional[Sequence[str]] = None, limit: int = 10) -> List[SearchResult]:
        """Fuzzy, filterable, ranked search."""
        self._require_snapshot()
        search_query = SearchQuery(
            query=query,
            category=category,
            tags=tuple(tags) if tags else None,
            limit=limit,
        )
        start_time = time.time()
        results = self.search_engine.search(search_query)
        record_search_metrics("semantic", time.time() - start_time, len(results))
        return results

    def search_services(self, query: Optional[str] = None, category: Optional[str] = None,
                        tags: Optional[Sequence[str]] = None, limit: int = 10) -> List[ServiceRecord]:
        """Literal substring search without ranking."""
        snapshot = self._require_snapshot()
        start_time = time.time()
        results = list(snapshot.services)

        if category:
            wanted = category.lower()
            results = [s for s in results if wanted in s.category.lower()]

        if tags:
            results = [s for s in results if s.tags and any(tag in s.tags for tag in tags)]

        if query:
            needle = query.lower()
            results = [s for s in results
                       if needle in s.name.lower()
                       or needle in s.description.lower()
                       or needle in s.free_tier.lower()
                       or needle in s.category.lower()]

        results = results[:limit]
        record_search_metrics("literal", time.time() - start_time, len(results))
        return results

    def get_similar_services(self, name: str, limit: int = 5) -> Optional[List[ServiceRecord]]:
        """Services related to the one called ``name``; ``None`` if it is unknown."""
        service = self.get_service(name=name)
        if service is None:
            return None
        return self.search_engine.similar(service, limit)

    def get_popular_services(self, limit: int = 10) -> List[ServiceRecord]:
        snapshot = self._require_snapshot()
        ranked = sorted(snapshot.services, key=popularity_score, reverse=True)
        return ranked[:limit]

    def list_categories(self, with_count: bool = False) -> Union[List[str], List[Dict[str, Any]]]:
        snapshot = self._require_snapshot()
        if with_count:
            return [{"name": c.name, "count": len(c.services)} for c in snapshot.categories]
        return list(snapshot.category_names)

    def get_service(self, name: Optional[str] = None, url: Optional[str] = None) -> Optional[ServiceRecord]:
        """Look a service up by exact URL, or by case-insensitive name.

        Returns ``None`` when nothing matches.
        """
        snapshot = self._require_snapshot()

        if url:
            return next((s for s in snapshot.services if s.url == url), None)

        if name:
            wanted = name.lower()
            return next((s for s in snapshot.services if s.name.lower() == wanted), None)

        return None

    def get_all_tags(self) -> List[str]:
        snapshot = self._require_snapshot()
        return sorted({tag for service in snapshot.services for tag in (service.tags or ())})

    def get_stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        services = snapshot.services if snapshot else ()
        return {
            "services": {
                "total": len(services),
                "categories": len(snapshot.categories) if snapshot else 0,
                "withTags": sum(1 for s in services if s.tags),
                "withLimitations": sum(1 for s in services if s.limitations),
            },
            "search": self.search_engine.stats(),
            "cache": self.cache_manager.stats(),
            "metrics": get_metrics_summary(),
            "initialized": self.is_initialized,
            "lastUpdated": snapshot.last_updated.isoformat() if snapshot else None,
        }
