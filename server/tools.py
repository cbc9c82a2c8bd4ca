"""Tool registry shared by the MCP and HTTP transports.

Each tool pairs a pydantic parameter model with an async handler. Arguments
are validated before they reach the catalog; handlers return a plain JSON
payload which each transport wraps in its own envelope.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from indexer.search_engine import DEFAULT_LIMIT
from observability.prometheus_metrics import record_error, record_tool_call
from pipelines.errors import CatalogError
from pipelines.models import ServiceRecord

from .catalog_service import CatalogService

logger = logging.getLogger(__name__)


# Parameter models

class ToolParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EmptyParams(ToolParams):
    pass


class SearchParams(ToolParams):
    query: Optional[str] = Field(default=None, description="Search query to filter services")
    category: Optional[str] = Field(default=None, description="Filter by category name")
    tags: Optional[List[str]] = Field(default=None, description="Filter by tags")
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, description="Maximum number of results (default: 10)")


class SemanticSearchParams(SearchParams):
    query: str = Field(..., description="Natural language search query")
    limit: int = Field(default=DEFAULT_LIMIT, ge=1,
                       description="Maximum number of results (default: 10, max: 50)")


class SimilarServicesParams(ToolParams):
    service_name: str = Field(..., alias="serviceName",
                              description="Name of the service to find similar ones for")
    limit: int = Field(default=5, ge=1, description="Maximum number of similar services (default: 5)")


class PopularServicesParams(ToolParams):
    limit: int = Field(default=10, ge=1, description="Number of services to return (default: 10)")


class ListCategoriesParams(ToolParams):
    with_count: bool = Field(default=False, alias="withCount",
                             description="Include service count for each category")


class GetServiceParams(ToolParams):
    name: Optional[str] = Field(default=None, description="Service name to look up")
    url: Optional[str] = Field(default=None, description="Service URL to look up")

    @model_validator(mode="after")
    def require_name_or_url(self) -> "GetServiceParams":
        if not self.name and not self.url:
            raise ValueError("Either name or url parameter is required")
        return self


# Payload helpers

SERVICE_FIELDS = ("name", "url", "description", "freeTier", "category", "limitations", "tags")
SIMILAR_FIELDS = ("name", "url", "description", "category", "tags")


def service_payload(service: ServiceRecord, fields=SERVICE_FIELDS) -> Dict[str, Any]:
    """Public (camelCase) view of a record; absent optional fields are omitted."""
    values = {
        "name": service.name,
        "url": service.url,
        "description": service.description,
        "freeTier": service.free_tier,
        "category": service.category,
        "limitations": service.limitations,
        "tags": list(service.tags) if service.tags else None,
    }
    return {key: values[key] for key in fields if values[key] is not None}


def relevance_score(score: float) -> int:
    """Convert a distance score (lower is better) to a percentage."""
    return round((1 - score) * 100)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# Registry

Handler = Callable[[CatalogService, BaseModel], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolOutcome:
    """JSON payload produced by a tool call, flagged when it reports an error."""
    payload: Dict[str, Any]
    is_error: bool = False

    def to_content(self) -> Dict[str, Any]:
        """MCP ``tools/call`` result envelope."""
        result: Dict[str, Any] = {
            "content": [{"type": "text", "text": json.dumps(self.payload, indent=2)}]
        }
        if self.is_error:
            result["isError"] = True
        return result


class ToolRegistry:
    """Ordered set of tools, looked up by name."""

    def __init__(self):
        self._tools: "OrderedDict[str, ToolSpec]" = OrderedDict()

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        return spec

    def tool(self, name: str, description: str, input_model: Type[BaseModel] = EmptyParams):
        """Decorator registering an async handler under ``name``."""
        def decorator(handler: Handler) -> Handler:
            self.register(ToolSpec(name=name, description=description,
                                   input_model=input_model, handler=handler))
            return handler
        return decorator

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [spec.to_dict() for spec in self._tools.values()]

    async def call(self, service: CatalogService, name: str,
                   arguments: Optional[Dict[str, Any]] = None) -> ToolOutcome:
        """Validate ``arguments`` and run the named tool.

        Validation failures and catalog errors come back as error outcomes;
        anything else propagates to the transport.
        """
        spec = self.get(name)
        if spec is None:
            return ToolOutcome({"error": f"Unknown tool: {name}"}, is_error=True)

        outcome = await self._run(spec, service, arguments or {})
        record_tool_call(name, outcome.is_error)
        return outcome

    async def _run(self, spec: ToolSpec, service: CatalogService,
                   arguments: Dict[str, Any]) -> ToolOutcome:
        try:
            params = spec.input_model.model_validate(arguments)
        except ValidationError as e:
            logger.info(f"Invalid parameters for {spec.name}: {e.error_count()} error(s)")
            details = json.loads(e.json(include_url=False))
            return ToolOutcome({"error": "Invalid parameters", "details": details}, is_error=True)

        try:
            payload = await spec.handler(service, params)
        except CatalogError as e:
            logger.warning(f"Tool {spec.name} failed: {e}")
            record_error(type(e).__name__, "tools")
            return ToolOutcome({"error": str(e)}, is_error=True)

        return ToolOutcome(payload)


registry = ToolRegistry()


@registry.tool("semantic_search",
               "Semantic/fuzzy search for free developer services using natural language",
               SemanticSearchParams)
async def semantic_search(service: CatalogService, params: SemanticSearchParams) -> Dict[str, Any]:
    limit = min(params.limit, service.max_search_limit)
    results = service.semantic_search(params.query, params.category, params.tags, limit)
    return {
        "count": len(results),
        "results": [
            {
                "service": service_payload(result.record),
                "relevanceScore": relevance_score(result.score),
            }
            for result in results
        ],
    }


@registry.tool("search_services",
               "Traditional search for free developer services",
               SearchParams)
async def search_services(service: CatalogService, params: SearchParams) -> Dict[str, Any]:
    results = service.search_services(params.query, params.category, params.tags, params.limit)
    return {
        "count": len(results),
        "services": [service_payload(s) for s in results],
    }


@registry.tool("get_similar_services",
               "Find services similar to a given service",
               SimilarServicesParams)
async def get_similar_services(service: CatalogService, params: SimilarServicesParams) -> Dict[str, Any]:
    similar = service.get_similar_services(params.service_name, params.limit)
    if similar is None:
        return {"error": "Service not found", "serviceName": params.service_name}

    original = service.get_service(name=params.service_name)
    return {
        "originalService": original.name,
        "count": len(similar),
        "similarServices": [service_payload(s, SIMILAR_FIELDS) for s in similar],
    }


@registry.tool("get_popular_services",
               "Get the most popular/comprehensive free services",
               PopularServicesParams)
async def get_popular_services(service: CatalogService, params: PopularServicesParams) -> Dict[str, Any]:
    popular = service.get_popular_services(params.limit)
    return {
        "count": len(popular),
        "services": [service_payload(s) for s in popular],
    }


@registry.tool("list_categories",
               "List all available service categories",
               ListCategoriesParams)
async def list_categories(service: CatalogService, params: ListCategoriesParams) -> Dict[str, Any]:
    categories = service.list_categories(with_count=params.with_count)
    return {"totalCategories": len(categories), "categories": categories}


@registry.tool("get_service",
               "Get detailed information about a specific service",
               GetServiceParams)
async def get_service(service: CatalogService, params: GetServiceParams) -> Dict[str, Any]:
    found = service.get_service(name=params.name, url=params.url)
    if found is None:
        return {"error": "Service not found", "params": params.model_dump(exclude_none=True)}
    return service_payload(found)


@registry.tool("list_tags", "List all available tags across all services")
async def list_tags(service: CatalogService, params: EmptyParams) -> Dict[str, Any]:
    tags = service.get_all_tags()
    return {"totalTags": len(tags), "tags": tags}


@registry.tool("get_stats", "Get statistics about the service database and cache")
async def get_stats(service: CatalogService, params: EmptyParams) -> Dict[str, Any]:
    return service.get_stats()


@registry.tool("refresh_data", "Refresh the free-for-dev data from GitHub")
async def refresh_data(service: CatalogService, params: EmptyParams) -> Dict[str, Any]:
    try:
        await service.refresh()
    except CatalogError as e:
        logger.error(f"Data refresh failed: {e}")
        record_error(type(e).__name__, "refresh")
        return {"success": False, "error": str(e), "timestamp": _timestamp()}

    stats = service.get_stats()
    return {
        "success": True,
        "message": "Data refreshed successfully",
        "stats": {
            "totalServices": stats["services"]["total"],
            "totalCategories": stats["services"]["categories"],
        },
        "timestamp": _timestamp(),
    }
