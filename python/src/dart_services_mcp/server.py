#!/usr/bin/env python3
"""
Dart Services MCP Server

Exposes source-code intelligence for Dart over MCP tools, backed by a
long-lived analysis engine and a compiler engine running as sidecar
processes.

- Compile results are memoized by content hash for one hour
- An engine crash during a request restarts the backend once; the
  request still reports the failure
- A non-zero engine exit, or a failed restart, stops the server with the
  engine's exit code

Tools provided:
- analyze / analyze_multi: Diagnostics for one or several sources
- compile: JavaScript output with an optional source map
- complete / complete_multi: Code completions at an offset
- fixes / fixes_multi: Quick fixes at an offset
- format: Formatted source with the cursor offset mapped
- document: Documentation for the element at an offset
- summarize: Plain-text summary of a dart/html/css bundle
- version, counter, status: Service information
"""

import asyncio
import signal
import sys
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from .cache_store import InMemoryCache, SqliteCache
from .config import GatewayConfig, ServerConfig, get_config
from .counter_store import InMemoryCounter, SqliteCounter
from .engine_process import sidecar_backend_factory
from .errors import FatalBackendExit
from .handlers import dispatch
from .orchestrator import DartServices
from .profiling import configure_logging
from .supervisor import RestartSupervisor

logger = logging.getLogger(__name__)


SOURCE_PROPERTY = {
    "type": "string",
    "description": "Dart source text of the main file",
}
SOURCES_PROPERTY = {
    "type": "object",
    "additionalProperties": {"type": "string"},
    "description": "Map of file name to source text",
}
OFFSET_PROPERTY = {
    "type": "integer",
    "minimum": 0,
    "description": "Cursor offset into the source",
}
LOCATION_PROPERTY = {
    "type": "object",
    "properties": {
        "sourceName": {"type": "string", "description": "Key of the file in 'sources'"},
        "offset": {"type": "integer", "minimum": 0},
    },
    "required": ["sourceName", "offset"],
}


TOOLS = [
    Tool(
        name="analyze",
        description="Analyze Dart source and return any errors, warnings and hints.",
        inputSchema={
            "type": "object",
            "properties": {"source": SOURCE_PROPERTY},
            "required": ["source"],
        },
    ),
    Tool(
        name="analyze_multi",
        description="Analyze a set of Dart files together.",
        inputSchema={
            "type": "object",
            "properties": {"sources": SOURCES_PROPERTY},
            "required": ["sources"],
        },
    ),
    Tool(
        name="compile",
        description=(
            "Compile Dart source to JavaScript. Results are cached by content; "
            "set bypassCache to force a fresh compile."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "source": SOURCE_PROPERTY,
                "returnSourceMap": {
                    "type": "boolean",
                    "description": "Include the source map. Default: false",
                },
                "bypassCache": {
                    "type": "boolean",
                    "description": "Skip the compile cache for this call. Default: false",
                },
            },
            "required": ["source"],
        },
    ),
    Tool(
        name="complete",
        description="Get the valid code completion results for the given offset.",
        inputSchema={
            "type": "object",
            "properties": {"source": SOURCE_PROPERTY, "offset": OFFSET_PROPERTY},
            "required": ["source", "offset"],
        },
    ),
    Tool(
        name="complete_multi",
        description="Code completion at a location within a set of files.",
        inputSchema={
            "type": "object",
            "properties": {"sources": SOURCES_PROPERTY, "location": LOCATION_PROPERTY},
            "required": ["sources", "location"],
        },
    ),
    Tool(
        name="fixes",
        description="Get any quick fixes for the given source code location.",
        inputSchema={
            "type": "object",
            "properties": {"source": SOURCE_PROPERTY, "offset": OFFSET_PROPERTY},
            "required": ["source", "offset"],
        },
    ),
    Tool(
        name="fixes_multi",
        description="Quick fixes at a location within a set of files.",
        inputSchema={
            "type": "object",
            "properties": {"sources": SOURCES_PROPERTY, "location": LOCATION_PROPERTY},
            "required": ["sources", "location"],
        },
    ),
    Tool(
        name="format",
        description=(
            "Format Dart source. If an offset is supplied, the new position for "
            "that offset in the formatted code is returned."
        ),
        inputSchema={
            "type": "object",
            "properties": {"source": SOURCE_PROPERTY, "offset": OFFSET_PROPERTY},
            "required": ["source"],
        },
    ),
    Tool(
        name="document",
        description="Return the dartdoc information for the element at the given offset.",
        inputSchema={
            "type": "object",
            "properties": {"source": SOURCE_PROPERTY, "offset": OFFSET_PROPERTY},
            "required": ["source", "offset"],
        },
    ),
    Tool(
        name="summarize",
        description="Summarize a Dart/HTML/CSS bundle in plain text.",
        inputSchema={
            "type": "object",
            "properties": {
                "sources": {
                    "type": "object",
                    "properties": {
                        "dart": {"type": "string"},
                        "html": {"type": "string"},
                        "css": {"type": "string"},
                    },
                    "required": ["dart", "html", "css"],
                },
            },
            "required": ["sources"],
        },
    ),
    Tool(
        name="version",
        description="Return the engine, runtime, service and host versions.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="counter",
        description="Return the total of a usage counter, e.g. 'Compilations'.",
        inputSchema={
            "type": "object",
            "properties": {"name": {"type": "string"}},
            "required": ["name"],
        },
    ),
    Tool(
        name="status",
        description="Backend state, restart count, cache statistics and counters.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


# Shutdown flag for graceful termination
_shutdown_event: asyncio.Event | None = None
_fatal_error: FatalBackendExit | None = None


def create_server(services: DartServices, server_config: ServerConfig | None = None) -> Server:
    """Create and configure the MCP server."""
    server_config = server_config or ServerConfig()
    server = Server(server_config.name, version=server_config.version)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        return await dispatch(services, name, arguments)

    return server


def create_stores(config: GatewayConfig) -> tuple[Any, Any]:
    """Pick SQLite-backed stores when paths are configured, else in-memory ones."""
    if config.cache_db_path:
        cache = SqliteCache(config.cache_db_path)
    else:
        cache = InMemoryCache(max_size=config.cache_max_entries)

    if config.counter_db_path:
        counter = SqliteCounter(config.counter_db_path)
    else:
        counter = InMemoryCounter()

    return cache, counter


async def _on_fatal(error: FatalBackendExit) -> None:
    global _fatal_error
    logger.critical(f"Shutting down: {error.message}")
    _fatal_error = error
    if _shutdown_event is not None:
        _shutdown_event.set()


async def run_server() -> int:
    """
    Run the MCP server until stdin closes, a signal arrives, or the
    backend fails fatally.

    Returns:
        Process exit code
    """
    global _shutdown_event, _fatal_error
    _shutdown_event = asyncio.Event()
    _fatal_error = None

    config, server_config = get_config()
    configure_logging(config.log_level)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 2

    cache, counter = create_stores(config)
    if isinstance(cache, SqliteCache):
        await cache.initialize()
        removed = await cache.purge_expired()
        logger.info(f"CACHE: purged {removed} expired entries")
    if isinstance(counter, SqliteCounter):
        await counter.initialize()

    supervisor = RestartSupervisor(
        sidecar_backend_factory(config),
        drain_timeout=config.drain_timeout_seconds,
        on_fatal=_on_fatal,
    )

    try:
        await supervisor.start()
        services = DartServices(config, supervisor, cache, counter)
        server = create_server(services, server_config)

        # Setup signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()

        def handle_shutdown(sig):
            logger.warning(f"Received {sig.name}, shutting down gracefully...")
            _shutdown_event.set()

        # Register signal handlers (Unix only)
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

        async with stdio_server() as (read_stream, write_stream):
            server_task = asyncio.create_task(
                server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options(),
                )
            )

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(_shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            # Cancel pending tasks
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    finally:
        await supervisor.stop()
        if isinstance(cache, SqliteCache):
            await cache.close()
        if isinstance(counter, SqliteCounter):
            await counter.close()

    if _fatal_error is not None:
        return _fatal_error.exit_code or 1
    return 0


def main():
    """Main entry point."""
    try:
        exit_code = asyncio.run(run_server())
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        print(f"Server error: {e}", file=sys.stderr)
        exit_code = 1

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
