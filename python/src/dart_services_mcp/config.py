"""
Configuration for the Dart Services MCP Server

Environment Variables:
- DART_SERVICES_SDK_PATH: Location of the SDK the engines run against
- DART_SERVICES_ANALYSIS_CMD: Command line that starts the analysis engine sidecar
- DART_SERVICES_COMPILER_CMD: Command line that starts the compiler engine sidecar
- DART_SERVICES_CHECKED_MODE: Compile in checked mode (default: true)
- DART_SERVICES_CACHE_TTL: Compile cache expiration in seconds (default: 3600)
- DART_SERVICES_CACHE_DB: SQLite file for the compile cache (default: in-memory)
- DART_SERVICES_COUNTER_DB: SQLite file for usage counters (default: in-memory)
- DART_SERVICES_DRAIN_TIMEOUT: Seconds a retired backend may finish in-flight calls (default: 10)
- DART_SERVICES_CACHE_MAX_ENTRIES: Size limit of the in-memory compile cache (default: 1000)
- DART_SERVICES_LEGACY_CACHE_MARKER: Honor the trailing suppress-cache comment (default: true)
- DART_SERVICES_HOST_VERSION: Host identifier reported by the version tool (default: standalone)
- DART_SERVICES_LOG_LEVEL: Logging level (default: INFO)
"""

import os
import shlex
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


# Bump whenever the shape of a cached compile payload changes
COMPILE_CACHE_VERSION = 1

DEFAULT_CACHE_TTL_SECONDS = 3600


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class GatewayConfig:
    """Configuration for the request orchestrator and its backend."""

    # Engine configuration
    sdk_path: str = field(default_factory=lambda: os.getenv("DART_SERVICES_SDK_PATH", ""))
    analysis_command: str = field(
        default_factory=lambda: os.getenv("DART_SERVICES_ANALYSIS_CMD", "")
    )
    compiler_command: str = field(
        default_factory=lambda: os.getenv("DART_SERVICES_COMPILER_CMD", "")
    )
    checked_mode: bool = field(
        default_factory=lambda: _env_flag("DART_SERVICES_CHECKED_MODE", "true")
    )

    # Compile cache
    cache_ttl_seconds: float = field(
        default_factory=lambda: float(
            os.getenv("DART_SERVICES_CACHE_TTL", str(DEFAULT_CACHE_TTL_SECONDS))
        )
    )
    cache_db_path: str = field(default_factory=lambda: os.getenv("DART_SERVICES_CACHE_DB", ""))
    cache_max_entries: int = field(
        default_factory=lambda: int(os.getenv("DART_SERVICES_CACHE_MAX_ENTRIES", "1000"))
    )
    honor_legacy_cache_marker: bool = field(
        default_factory=lambda: _env_flag("DART_SERVICES_LEGACY_CACHE_MARKER", "true")
    )

    # Usage counters
    counter_db_path: str = field(
        default_factory=lambda: os.getenv("DART_SERVICES_COUNTER_DB", "")
    )

    # Restart behaviour
    drain_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("DART_SERVICES_DRAIN_TIMEOUT", "10"))
    )

    # Reported by the version operation
    host_version: str = field(
        default_factory=lambda: os.getenv("DART_SERVICES_HOST_VERSION", "standalone")
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("DART_SERVICES_LOG_LEVEL", "INFO")
    )

    @property
    def analysis_argv(self) -> list[str]:
        """Analysis engine command split into argv form."""
        return shlex.split(self.analysis_command)

    @property
    def compiler_argv(self) -> list[str]:
        """Compiler engine command split into argv form."""
        return shlex.split(self.compiler_command)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.analysis_command:
            errors.append("DART_SERVICES_ANALYSIS_CMD environment variable not set")

        if not self.compiler_command:
            errors.append("DART_SERVICES_COMPILER_CMD environment variable not set")

        if self.cache_ttl_seconds <= 0:
            errors.append("cache_ttl_seconds must be positive")

        if self.cache_max_entries < 1:
            errors.append("cache_max_entries must be at least 1")

        if self.drain_timeout_seconds < 0:
            errors.append("drain_timeout_seconds must not be negative")

        return errors


@dataclass
class ServerConfig:
    """Configuration for the MCP server."""

    name: str = "dart-services"
    version: str = "1.0.0"


def get_config() -> tuple[GatewayConfig, ServerConfig]:
    """Get configuration instances."""
    return GatewayConfig(), ServerConfig()
