"""
Tool handlers for the Dart Services MCP Server.

Each handler maps tool arguments onto one DartServices operation and
returns the result as a JSON TextContent block. Gateway errors become
"Error: <kind>: <message>" responses.
"""

import json
import logging
from typing import Any, Awaitable, Callable

from mcp.types import TextContent

from .errors import GatewayError, InvalidRequest
from .normalize import Location
from .orchestrator import DartServices

logger = logging.getLogger(__name__)


Handler = Callable[[DartServices, dict[str, Any]], Awaitable[Any]]


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


def _flag(arguments: dict[str, Any], name: str) -> bool:
    value = arguments.get(name, False)
    if not isinstance(value, bool):
        raise InvalidRequest(f"Parameter '{name}' must be a boolean")
    return value


async def handle_analyze(services: DartServices, arguments: dict[str, Any]) -> Any:
    return (await services.analyze(arguments.get("source"))).to_dict()


async def handle_analyze_multi(services: DartServices, arguments: dict[str, Any]) -> Any:
    return (await services.analyze_multi(arguments.get("sources"))).to_dict()


async def handle_compile(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.compile(
        arguments.get("source"),
        return_source_map=_flag(arguments, "returnSourceMap"),
        bypass_cache=_flag(arguments, "bypassCache"),
    )
    return response.to_dict()


async def handle_complete(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.complete(arguments.get("source"), arguments.get("offset"))
    return response.to_dict()


async def handle_complete_multi(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.complete_multi(
        arguments.get("sources"), Location.from_dict(arguments.get("location"))
    )
    return response.to_dict()


async def handle_fixes(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.fixes(arguments.get("source"), arguments.get("offset"))
    return response.to_dict()


async def handle_fixes_multi(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.fixes_multi(
        arguments.get("sources"), Location.from_dict(arguments.get("location"))
    )
    return response.to_dict()


async def handle_format(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.format(arguments.get("source"), arguments.get("offset"))
    return response.to_dict()


async def handle_document(services: DartServices, arguments: dict[str, Any]) -> Any:
    response = await services.document(arguments.get("source"), arguments.get("offset"))
    return response.to_dict()


async def handle_summarize(services: DartServices, arguments: dict[str, Any]) -> Any:
    return (await services.summarize(arguments.get("sources"))).to_dict()


async def handle_version(services: DartServices, arguments: dict[str, Any]) -> Any:
    return services.version().to_dict()


async def handle_counter(services: DartServices, arguments: dict[str, Any]) -> Any:
    return (await services.counter_total(arguments.get("name"))).to_dict()


async def handle_status(services: DartServices, arguments: dict[str, Any]) -> Any:
    """Backend state, cache statistics and counter totals."""
    status: dict[str, Any] = {
        "backend": services.supervisor.get_status(),
        "version": services.version().to_dict(),
    }

    get_stats = getattr(services.cache, "get_stats", None)
    if callable(get_stats):
        status["cache"] = get_stats()

    snapshot = getattr(services.counter, "snapshot", None)
    if callable(snapshot):
        status["counters"] = await snapshot()

    return status


TOOL_HANDLERS: dict[str, Handler] = {
    "analyze": handle_analyze,
    "analyze_multi": handle_analyze_multi,
    "compile": handle_compile,
    "complete": handle_complete,
    "complete_multi": handle_complete_multi,
    "fixes": handle_fixes,
    "fixes_multi": handle_fixes_multi,
    "format": handle_format,
    "document": handle_document,
    "summarize": handle_summarize,
    "version": handle_version,
    "counter": handle_counter,
    "status": handle_status,
}


async def dispatch(
    services: DartServices,
    name: str,
    arguments: dict[str, Any] | None
) -> list[TextContent]:
    """Run the named tool and wrap its result or error for the client."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        return _text(await handler(services, arguments or {}))
    except GatewayError as e:
        logger.info(f"Tool {name} failed: {e.kind}: {e.message}")
        return [TextContent(type="text", text=f"Error: {e.kind}: {e.message}")]
    except Exception as e:
        logger.error(f"Unexpected error in tool {name}", exc_info=True)
        return [TextContent(type="text", text=f"Error: {e}")]
