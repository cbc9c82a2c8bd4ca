"""Runtime configuration for the free-tier catalog.

Defaults can be overridden by an optional YAML file and then by
``FREETIER_*`` environment variables, in that order.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

from pipelines.fetcher import DEFAULT_SOURCE_URL

logger = logging.getLogger(__name__)

ENV_PREFIX = "FREETIER_"


def _default_cache_dir() -> str:
    return str(Path.home() / ".cache" / "free-for-dev-mcp")


class CatalogConfig(BaseModel):
    """Catalog, cache, search and server settings."""
    # Source
    source_url: str = Field(default=DEFAULT_SOURCE_URL, description="Raw markdown document URL")
    request_timeout: int = Field(default=30, gt=0, description="Fetch timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Fetch retry attempts")

    # Snapshot cache
    cache_dir: str = Field(default_factory=_default_cache_dir, description="Durable cache directory")
    durable_ttl_hours: float = Field(default=24, gt=0, description="Durable snapshot lifetime")
    memory_ttl_seconds: float = Field(default=600, gt=0, description="In-memory snapshot lifetime")

    # Search
    search_cache_size: int = Field(default=100, gt=0, description="Memoized query capacity")
    search_cache_ttl_seconds: float = Field(default=300, gt=0, description="Memoized query lifetime")
    max_search_limit: int = Field(default=50, gt=0, description="Cap on semantic_search limit")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")
    log_file: Optional[str] = Field(default=None, description="Optional JSON log file")

    # HTTP server
    http_host: str = Field(default="127.0.0.1", description="HTTP bind address")
    http_port: int = Field(default=8080, gt=0, lt=65536, description="HTTP port")

    @classmethod
    def from_env(cls, base: Optional[Dict[str, Any]] = None) -> 'CatalogConfig':
        """Create configuration from environment variables over ``base`` values."""
        values = dict(base or {})
        for name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                values[name] = env_value
        return cls(**values)


def _find_config_file(path: Optional[str]) -> Optional[Path]:
    candidates = [
        path,
        os.environ.get(f"{ENV_PREFIX}CONFIG"),
        os.path.join(os.getcwd(), "config", "catalog.yaml"),
        os.path.join(os.path.expanduser("~"), ".config", "freetier-catalog", "catalog.yaml"),
    ]
    for candidate in candidates:
        if candidate and os.path.exists(candidate):
            return Path(candidate)
    return None


def load_config(path: Optional[str] = None) -> CatalogConfig:
    """Load configuration from an optional YAML file, then the environment."""
    file_values: Dict[str, Any] = {}
    config_path = _find_config_file(path)

    if config_path is not None:
        with open(config_path, "r", encoding="utf-8") as f:
            file_values = yaml.safe_load(f) or {}
        if not isinstance(file_values, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        logger.info(f"Loaded configuration from {config_path}")

    return CatalogConfig.from_env(file_values)
