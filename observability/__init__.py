"""Observability package for the free-tier catalog."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    log_performance
)
from .prometheus_metrics import (
    catalog_registry,
    setup_prometheus_metrics,
    record_search_metrics,
    record_tool_call,
    record_cache_lookup,
    record_catalog_load,
    record_error,
    get_metrics_summary
)

__all__ = [
    # Logging
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'log_performance',

    # Prometheus
    'catalog_registry',
    'setup_prometheus_metrics',
    'record_search_metrics',
    'record_tool_call',
    'record_cache_lookup',
    'record_catalog_load',
    'record_error',
    'get_metrics_summary'
]
