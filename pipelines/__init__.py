"""Pipelines package for the free-tier catalog.

Provides document retrieval, markdown parsing and the catalog data model.
"""

from .errors import CatalogError, FetchError, ParseError, IndexNotReadyError
from .models import ServiceRecord, Category, CatalogSnapshot
from .catalog_parser import CatalogParser, ParserState, extract_tags, extract_limitations, parse_catalog
from .fetcher import ReadmeFetcher, DEFAULT_SOURCE_URL

__all__ = [
    # Errors
    'CatalogError',
    'FetchError',
    'ParseError',
    'IndexNotReadyError',

    # Models
    'ServiceRecord',
    'Category',
    'CatalogSnapshot',

    # Parser
    'CatalogParser',
    'ParserState',
    'extract_tags',
    'extract_limitations',
    'parse_catalog',

    # Fetcher
    'ReadmeFetcher',
    'DEFAULT_SOURCE_URL'
]
