# Free-tier catalog MCP server - JSON-RPC 2.0 over stdio
# Implements the Model Context Protocol tool surface for the catalog

import sys, json, asyncio, argparse, logging
from typing import Dict, Any, Optional, TextIO, Union
from dataclasses import dataclass

from config.settings import load_config
from observability.logging import setup_logging
from observability.prometheus_metrics import record_error

from .catalog_service import CatalogService
from .tools import ToolRegistry, registry as default_registry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JSONRPCError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class JSONRPCRequest:
    jsonrpc: str
    method: str
    id: Optional[Union[str, int]] = None
    params: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Any) -> "JSONRPCRequest":
        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            raise JSONRPCError(INVALID_REQUEST, "Invalid JSON-RPC version")
        method = data.get("method")
        if not method or not isinstance(method, str):
            raise JSONRPCError(INVALID_REQUEST, "Missing method")
        params = data.get("params")
        if params is not None and not isinstance(params, dict):
            raise JSONRPCError(INVALID_PARAMS, "params must be an object")
        return cls(jsonrpc="2.0", method=method, id=data.get("id"), params=params)


def error_response(request_id: Optional[Union[str, int]], code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {
            "code": code,
            "message": message
        }
    }


class MCPServer:
    def __init__(self, service: CatalogService, tools: Optional[ToolRegistry] = None):
        self.service = service
        self.tools = tools or default_registry
        self.capabilities = {
            "tools": {
                "listChanged": False
            }
        }
        self.server_info = {
            "name": "freetier-catalog-mcp-server",
            "version": "1.0.0"
        }
        self.session_initialized = False
        self._handlers = {
            "initialize": self.handle_initialize,
            "notifications/initialized": self.handle_initialized,
            "initialized": self.handle_initialized,
            "tools/list": self.handle_tools_list,
            "tools/call": self.handle_tools_call,
            "ping": self.handle_ping,
        }

    async def handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle MCP initialize request"""
        client_info = params.get("clientInfo", {})
        logger.info(f"Initializing MCP session with client: {client_info.get('name', 'unknown')}")

        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info
        }

    async def handle_initialized(self, params: Dict[str, Any]) -> None:
        """Handle MCP initialized notification"""
        self.session_initialized = True
        logger.info("MCP session initialized successfully")

    async def handle_ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def handle_tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """List available MCP tools"""
        return {"tools": self.tools.list_tools()}

    async def handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute MCP tool calls, loading the catalog on first use"""
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise JSONRPCError(INVALID_PARAMS, "Missing tool name")

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise JSONRPCError(INVALID_PARAMS, "arguments must be an object")

        await self.service.initialize()
        outcome = await self.tools.call(self.service, name, arguments)
        return outcome.to_content()

    async def handle_request(self, request_data: Any) -> Optional[Dict[str, Any]]:
        """Dispatch one decoded JSON-RPC 2.0 message"""
        request_id = request_data.get("id") if isinstance(request_data, dict) else None
        # Notifications never get a reply, not even an error
        notification = isinstance(request_data, dict) and "id" not in request_data
        try:
            request = JSONRPCRequest.from_dict(request_data)

            handler = self._handlers.get(request.method)
            if handler is None:
                raise JSONRPCError(METHOD_NOT_FOUND, f"Unknown method: {request.method}")

            result = await handler(request.params or {})
            if notification:
                return None

            return {
                "jsonrpc": "2.0",
                "id": request.id,
                "result": result
            }

        except JSONRPCError as e:
            logger.warning(f"Rejected {'notification' if notification else 'request'}: {e.message}")
            return None if notification else error_response(request_id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Error handling request: {e}")
            record_error(type(e).__name__, "mcp_server")
            return None if notification else error_response(request_id, INTERNAL_ERROR, str(e))

    async def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Decode one newline-delimited frame and handle it"""
        try:
            request_data = json.loads(line)
        except json.JSONDecodeError as e:
            return error_response(None, PARSE_ERROR, f"Parse error: {e}")
        return await self.handle_request(request_data)


async def serve_stdio(server: MCPServer, stdin: TextIO = None, stdout: TextIO = None) -> None:
    """Read requests line by line until EOF, writing one response per request"""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    logger.info("Starting MCP server in stdio mode")

    while True:
        line = await asyncio.to_thread(stdin.readline)
        if not line:
            break
        if not line.strip():
            continue

        response = await server.handle_line(line.strip())
        if response:  # Don't send response for notifications
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Free-tier catalog MCP server")
    parser.add_argument("--stdio", action="store_true", help="Serve JSON-RPC over stdio (default)")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--log-level", help="Override the configured log level")
    parser.add_argument("--list-tools", action="store_true", help="Print the tool list and exit")
    return parser


async def main(argv=None):
    """Main entry point for MCP server"""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    setup_logging(
        level=args.log_level or config.log_level,
        log_file=config.log_file,
        use_json=config.log_json,
        stream=sys.stderr,
    )

    service = CatalogService.from_config(config)
    server = MCPServer(service)

    if args.list_tools:
        for tool in server.tools.list_tools():
            print(f"  - {tool['name']}: {tool['description']}")
        return

    try:
        await serve_stdio(server)
    finally:
        await service.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("MCP server stopped")


if __name__ == "__main__":
    run()
