"""Search and caching primitives for the free-tier catalog."""

from .memory_cache import MemoryCache, CacheKey
from .fuzzy import FuzzyIndex, FieldMatch, FuzzyMatch
from .search_engine import SearchEngine, SearchQuery, SearchResult

__all__ = [
    'MemoryCache',
    'CacheKey',
    'FuzzyIndex',
    'FieldMatch',
    'FuzzyMatch',
    'SearchEngine',
    'SearchQuery',
    'SearchResult'
]
