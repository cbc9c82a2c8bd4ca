"""Catalog service and its MCP and HTTP transports."""
