"""
Cache stores for the Dart Services MCP Server.

Implements the CachePort with:
- InMemoryCache: bounded TTL cache for single-process deployments and tests
- SqliteCache: aiosqlite-backed cache that survives process restarts

Both are acceleration layers only; nothing relies on an entry being present.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import aiosqlite


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload. Entries are replaced, never mutated."""
    key: str
    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Statistics about cache usage."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "evictions": self.evictions,
            "hit_rate": self.hit_rate,
        }


class InMemoryCache:
    """
    In-process TTL cache.

    When full, the oldest written entry is evicted first.
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.stats = CacheStats()

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.stats.misses += 1
            return None

        self.stats.hits += 1
        return entry.value

    async def set(self, key: str, value: str, ttl: float) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key, value, self._clock() + ttl)
        self.stats.writes += 1

        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats.to_dict(), "size": len(self._entries), "max_size": self.max_size}


class SqliteCache:
    """
    Cache persisted in SQLite.

    Features:
    - Async operations with aiosqlite
    - WAL mode so readers do not block the writer
    - Expired rows read as absent and are deleted on access
    """

    def __init__(self, db_path: Path | str, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self.stats = CacheStats()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self._initialized:
            return

        async with self._init_lock:
            # Another caller may have finished while this one waited
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.db_path))

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            await self._db.executescript("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_cache_expires_at ON cache_entries(expires_at);
            """)
            await self._db.commit()

            self._initialized = True

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            self._initialized = False

    async def get(self, key: str) -> str | None:
        await self.initialize()

        async with self._db.execute(
            "SELECT value, expires_at FROM cache_entries WHERE key = ?",
            (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            self.stats.misses += 1
            return None

        value, expires_at = row
        if CacheEntry(key, value, expires_at).is_expired(self._clock()):
            await self.remove(key)
            self.stats.misses += 1
            return None

        self.stats.hits += 1
        return value

    async def set(self, key: str, value: str, ttl: float) -> None:
        await self.initialize()

        await self._db.execute(
            "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, self._clock() + ttl)
        )
        await self._db.commit()
        self.stats.writes += 1

    async def remove(self, key: str) -> None:
        await self.initialize()

        await self._db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await self._db.commit()

    async def purge_expired(self) -> int:
        """Delete all expired rows and return how many were removed."""
        await self.initialize()

        cursor = await self._db.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?",
            (self._clock(),)
        )
        await self._db.commit()
        removed = cursor.rowcount
        self.stats.evictions += removed
        return removed

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats.to_dict(), "db_path": str(self.db_path)}
