from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import argparse, datetime, logging

from fastapi import FastAPI, Body, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
import uvicorn

from config.settings import CatalogConfig, load_config
from observability.logging import setup_logging
from observability.prometheus_metrics import setup_prometheus_metrics
from pipelines.errors import FetchError, ParseError

from .catalog_service import CatalogService
from .tools import ToolRegistry, registry as default_registry

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def get_catalog(request: Request) -> CatalogService:
    """Dependency to get the catalog service."""
    return request.app.state.catalog


def get_tools(request: Request) -> ToolRegistry:
    return request.app.state.tools


def create_app(service: CatalogService, tools: Optional[ToolRegistry] = None,
               preload: bool = False) -> FastAPI:
    """Build the HTTP API around an existing catalog service.

    Args:
        service: Catalog service answering the tool calls
        tools: Tool registry; defaults to the shared one
        preload: Load the catalog at startup instead of on the first call
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if preload:
            await service.initialize()
            logger.info("Catalog preloaded")
        yield
        await service.close()
        logger.info("Catalog service closed")

    app = FastAPI(title="Free-Tier Catalog API", version=API_VERSION, lifespan=lifespan)
    app.state.catalog = service
    app.state.tools = tools or default_registry

    setup_prometheus_metrics(app)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "Free-Tier Catalog API",
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
            "tools": "/tools",
            "metrics": "/metrics"
        }

    @app.get("/health")
    def health(catalog: CatalogService = Depends(get_catalog)):
        return {
            "ok": True,
            "initialized": catalog.is_initialized,
            "time": datetime.datetime.now(datetime.timezone.utc).isoformat()
        }

    @app.get("/tools")
    def list_tools(registry: ToolRegistry = Depends(get_tools)):
        return {"tools": registry.list_tools()}

    @app.post("/tools/{name}")
    async def call_tool(name: str,
                        arguments: Optional[Dict[str, Any]] = Body(default=None),
                        catalog: CatalogService = Depends(get_catalog),
                        registry: ToolRegistry = Depends(get_tools)):
        """Run a tool; error payloads come back with a 400 status."""
        if registry.get(name) is None:
            raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")

        try:
            await catalog.initialize()
        except (FetchError, ParseError) as e:
            logger.error(f"Catalog unavailable: {e}")
            raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")

        outcome = await registry.call(catalog, name, arguments)
        if outcome.is_error:
            return JSONResponse(status_code=400, content=outcome.payload)
        return outcome.payload

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Free-tier catalog HTTP API")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Port")
    parser.add_argument("--preload", action="store_true", help="Load the catalog at startup")
    args = parser.parse_args(argv)

    config: CatalogConfig = load_config(args.config)
    setup_logging(level=config.log_level, log_file=config.log_file, use_json=config.log_json)

    app = create_app(CatalogService.from_config(config), preload=args.preload)
    uvicorn.run(app, host=args.host or config.http_host, port=args.port or config.http_port)


if __name__ == "__main__":
    main()
