"""
Pytest configuration and fixtures for Dart Services MCP tests.
"""

import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from dart_services_mcp.cache_store import InMemoryCache
from dart_services_mcp.config import GatewayConfig
from dart_services_mcp.counter_store import InMemoryCounter
from dart_services_mcp.errors import FatalBackendExit
from dart_services_mcp.orchestrator import DartServices
from dart_services_mcp.supervisor import RestartSupervisor

from fakes import FakeBackendFactory


FAKE_ENGINE_SCRIPT = Path(__file__).parent / "fake_engine.py"


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Create a test gateway configuration."""
    return GatewayConfig(
        sdk_path="",
        analysis_command=f"{sys.executable} {FAKE_ENGINE_SCRIPT}",
        compiler_command=f"{sys.executable} {FAKE_ENGINE_SCRIPT}",
        checked_mode=True,
        cache_ttl_seconds=3600,
        cache_db_path="",
        cache_max_entries=100,
        honor_legacy_cache_marker=True,
        counter_db_path="",
        drain_timeout_seconds=0.5,
        host_version="test-host",
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for database files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backend_factory() -> FakeBackendFactory:
    return FakeBackendFactory()


@pytest.fixture
def fatal_errors() -> list[FatalBackendExit]:
    """Collects errors passed to the supervisor's on_fatal callback."""
    return []


@pytest_asyncio.fixture
async def supervisor(
    backend_factory: FakeBackendFactory,
    fatal_errors: list[FatalBackendExit],
) -> AsyncGenerator[RestartSupervisor, None]:
    """A started supervisor over fake engines."""
    supervisor = RestartSupervisor(
        backend_factory,
        drain_timeout=0.5,
        on_fatal=fatal_errors.append,
    )
    await supervisor.start()
    yield supervisor
    await supervisor.stop()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache(max_size=100)


@pytest.fixture
def counter() -> InMemoryCounter:
    return InMemoryCounter()


@pytest.fixture
def services(
    gateway_config: GatewayConfig,
    supervisor: RestartSupervisor,
    cache: InMemoryCache,
    counter: InMemoryCounter,
) -> DartServices:
    return DartServices(gateway_config, supervisor, cache, counter)


@pytest.fixture
def sample_sources() -> dict[str, str]:
    """A small two-file program."""
    return {
        "main.dart": "import 'greeter.dart';\n\nvoid main() {\n  greet('world');\n}\n",
        "greeter.dart": "void greet(String name) {\n  print('Hello, $name');\n}\n",
    }
