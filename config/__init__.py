"""Configuration module for the free-tier catalog.

Provides settings for the source document, caches, search and servers.
"""

from .settings import CatalogConfig, load_config, ENV_PREFIX

__all__ = [
    'CatalogConfig',
    'load_config',
    'ENV_PREFIX'
]
