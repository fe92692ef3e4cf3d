"""
Capability interfaces for the external stores the orchestrator talks to.

Implementations:
- cache_store.InMemoryCache, cache_store.SqliteCache
- counter_store.InMemoryCounter, counter_store.SqliteCounter
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class CachePort(Protocol):
    """Best-effort key/value cache. Eviction policy belongs to the store."""

    async def get(self, key: str) -> str | None:
        """Return the cached value, or None if absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl: float) -> None:
        """Store a value that expires ttl seconds from now."""
        ...

    async def remove(self, key: str) -> None:
        ...


@runtime_checkable
class CounterPort(Protocol):
    """Persistent, monotonically increasing named counters."""

    async def increment(self, name: str, by: int = 1) -> None:
        ...

    async def get_total(self, name: str) -> int:
        """Return the counter total, 0 for unknown names."""
        ...
