"""
Usage counter stores.

Implements the CounterPort with an in-process dict and an aiosqlite table.
Counters only ever grow; the orchestrator writes them and the `counter`
operation reads them back.
"""

import asyncio
from collections import defaultdict
from pathlib import Path

import aiosqlite


class InMemoryCounter:
    """Counters that live as long as the process."""

    def __init__(self):
        self._totals: dict[str, int] = defaultdict(int)

    async def increment(self, name: str, by: int = 1) -> None:
        if by < 0:
            raise ValueError(f"Counters only increase (got {by} for '{name}')")
        self._totals[name] += by

    async def get_total(self, name: str) -> int:
        return self._totals.get(name, 0)

    async def snapshot(self) -> dict[str, int]:
        return dict(self._totals)


class SqliteCounter:
    """Counters persisted in SQLite with an upsert per increment."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._initialized:
            return

        async with self._init_lock:
            # Another caller may have finished while this one waited
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.db_path))

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY,
                    total INTEGER NOT NULL DEFAULT 0
                )
            """)
            await self._db.commit()

            self._initialized = True

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            self._initialized = False

    async def increment(self, name: str, by: int = 1) -> None:
        if by < 0:
            raise ValueError(f"Counters only increase (got {by} for '{name}')")
        await self.initialize()

        await self._db.execute(
            """
            INSERT INTO counters (name, total) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET total = total + excluded.total
            """,
            (name, by)
        )
        await self._db.commit()

    async def get_total(self, name: str) -> int:
        await self.initialize()

        async with self._db.execute(
            "SELECT total FROM counters WHERE name = ?",
            (name,)
        ) as cursor:
            row = await cursor.fetchone()

        return row[0] if row else 0

    async def snapshot(self) -> dict[str, int]:
        await self.initialize()

        async with self._db.execute("SELECT name, total FROM counters") as cursor:
            return {name: total async for name, total in cursor}
