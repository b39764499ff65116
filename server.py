"""
ORATS MCP Server canonical entrypoint.

This is the single source of truth for:
- MCP server name and version
- how a protocol server instance is assembled (`create_orats_server`)

It also runs the local stdio transport: one implicit session for the whole
process, no auth, no rate limiting. The HTTP transport (`api_server.py`) builds
one server per session from the same factory.
"""

from __future__ import annotations

import sys
from typing import Optional

import anyio
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from app.core.container import global_container
from app.core.settings import settings
from app.tools.dispatcher import ToolDispatcher
from app.tools.market_data import register_market_tools
from observability import build_log_context, configure_logging, log_event

SERVER_NAME = settings.PROJECT_NAME
SERVER_VERSION = settings.VERSION

STDIO_CTX = build_log_context(transport="stdio")


def create_orats_server(dispatcher: Optional[ToolDispatcher] = None) -> Server:
    server = Server(SERVER_NAME, version=SERVER_VERSION)
    register_market_tools(server, dispatcher or global_container.dispatcher)
    return server


async def run_stdio(server: Optional[Server] = None) -> None:
    server = server or create_orats_server()
    async with stdio_server() as (read_stream, write_stream):
        log_event("stdio_server_started", ctx=STDIO_CTX, data={"tools": len(global_container.tool_registry)})
        print("ORATS MCP Server running on stdio", file=sys.stderr)
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    anyio.run(run_stdio)


if __name__ == "__main__":
    main()
