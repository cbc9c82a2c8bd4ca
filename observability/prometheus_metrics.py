"""Prometheus metrics for the free-tier catalog.

Everything registers against ``catalog_registry`` rather than the process
default, so several apps (or test runs) can live in one interpreter.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry
from fastapi import FastAPI, Request, Response
import time
from typing import Optional, Dict, Any
import logging
import os

logger = logging.getLogger(__name__)

catalog_registry = CollectorRegistry()

# HTTP transport
http_requests = Counter(
    'freetier_http_requests_total',
    'HTTP requests served, by route template and status',
    ['method', 'route', 'status_code'],
    registry=catalog_registry
)

http_latency = Histogram(
    'freetier_http_request_duration_seconds',
    'Wall time spent serving an HTTP request',
    ['method', 'route'],
    buckets=[0.005, 0.025, 0.1, 0.5, 1.0, 5.0, 30.0],
    registry=catalog_registry
)

# Tools
tool_calls = Counter(
    'freetier_tool_calls_total',
    'Tool invocations by tool name and outcome',
    ['tool', 'outcome'],
    registry=catalog_registry
)

# Search
search_requests = Counter(
    'freetier_search_requests_total',
    'Catalog searches, by search kind and status',
    ['search_type', 'status'],
    registry=catalog_registry
)

search_latency = Histogram(
    'freetier_search_duration_seconds',
    'Time spent answering a catalog search',
    ['search_type'],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
    registry=catalog_registry
)

search_hits = Histogram(
    'freetier_search_results_count',
    'Services returned per catalog search',
    ['search_type'],
    buckets=[0, 1, 5, 10, 25, 50],
    registry=catalog_registry
)

cache_lookups = Counter(
    'freetier_cache_lookups_total',
    'Cache lookups by cache layer and outcome',
    ['cache', 'result'],
    registry=catalog_registry
)

# Catalog
catalog_loads = Counter(
    'freetier_catalog_loads_total',
    'Catalog snapshots published, by where they came from',
    ['source'],
    registry=catalog_registry
)

catalog_services = Gauge(
    'freetier_catalog_services',
    'Number of services in the active snapshot',
    registry=catalog_registry
)

catalog_categories = Gauge(
    'freetier_catalog_categories',
    'Number of categories in the active snapshot',
    registry=catalog_registry
)

build_info = Info(
    'freetier_build',
    'Free-tier catalog build and deployment details',
    registry=catalog_registry
)

errors = Counter(
    'freetier_errors_total',
    'Errors raised inside the catalog, by exception type and component',
    ['error_type', 'component'],
    registry=catalog_registry
)


def _route_label(request: Request) -> str:
    # Label by route template ("/tools/{name}") so unknown paths can't grow the series
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Instrument ``app`` and expose ``/metrics``."""

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        started = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        except Exception as e:
            logger.error(f"Unhandled error serving {request.url.path}: {e}")
            errors.labels(error_type=type(e).__name__, component="http").inc()
            raise
        finally:
            route = _route_label(request)
            http_requests.labels(method=request.method, route=route, status_code=status_code).inc()
            http_latency.labels(method=request.method, route=route).observe(time.perf_counter() - started)

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint():
        return Response(content=generate_latest(catalog_registry), media_type=CONTENT_TYPE_LATEST)

    build_info.info({
        'version': os.getenv('APP_VERSION', 'unknown'),
        'environment': os.getenv('ENVIRONMENT', 'development'),
    })
    logger.info("Prometheus metrics enabled at /metrics")


def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Count one search and, when it succeeded, how many services it returned."""
    search_requests.labels(search_type=search_type, status="error" if error else "success").inc()
    search_latency.labels(search_type=search_type).observe(duration)

    if error:
        errors.labels(error_type=error, component="search").inc()
    else:
        search_hits.labels(search_type=search_type).observe(result_count)


def record_tool_call(tool: str, is_error: bool) -> None:
    tool_calls.labels(tool=tool, outcome="error" if is_error else "ok").inc()


def record_cache_lookup(cache: str, hit: bool) -> None:
    cache_lookups.labels(cache=cache, result="hit" if hit else "miss").inc()


def record_catalog_load(source: str, service_count: int, category_count: int) -> None:
    """Record publication of a new catalog snapshot."""
    catalog_loads.labels(source=source).inc()
    catalog_services.set(service_count)
    catalog_categories.set(category_count)


def record_error(error_type: str, component: str) -> None:
    errors.labels(error_type=error_type, component=component).inc()


def _sample_total(metric_name: str) -> float:
    total = 0.0
    for metric in catalog_registry.collect():
        for sample in metric.samples:
            if sample.name == metric_name:
                total += sample.value
    return total


def get_metrics_summary() -> Dict[str, Any]:
    """Flatten the headline counters into a JSON-friendly dict."""
    return {
        "requests_total": _sample_total('freetier_http_requests_total'),
        "tool_calls_total": _sample_total('freetier_tool_calls_total'),
        "search_requests_total": _sample_total('freetier_search_requests_total'),
        "cache_lookups_total": _sample_total('freetier_cache_lookups_total'),
        "catalog_loads_total": _sample_total('freetier_catalog_loads_total'),
        "catalog_services": _sample_total('freetier_catalog_services'),
        "errors_total": _sample_total('freetier_errors_total'),
    }
