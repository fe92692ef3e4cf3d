"""
Dart Services MCP Server

An MCP server that exposes analysis, compilation to JavaScript, code
completion, quick fixes, formatting and documentation lookup for Dart
source code.

The interesting part is the orchestration around the engines:
- Requests are validated and normalized before any I/O
- Compile results are cached by a versioned, content-addressed key
- An engine-level fault triggers exactly one supervised restart
- Usage is metered through persistent counters
"""

__version__ = "1.0.0"

from .server import main, create_server
from .orchestrator import DartServices
from .supervisor import RestartSupervisor
from .backend import BackendHandle
from .cache_store import InMemoryCache, SqliteCache
from .counter_store import InMemoryCounter, SqliteCounter

__all__ = [
    "main",
    "create_server",
    "DartServices",
    "RestartSupervisor",
    "BackendHandle",
    "InMemoryCache",
    "SqliteCache",
    "InMemoryCounter",
    "SqliteCounter",
]
