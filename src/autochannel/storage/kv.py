"""
Key-value cache used by the engine to remember provisioned channels.

The engine only depends on the KVMap interface (get / set / delete).
Two implementations ship with the package:

- MemoryKVMap: process-local dict, for tests and throwaway runs
- SqliteKVMap: durable single-table store on aiosqlite
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


class KVMap(ABC):
    """Async string → string store. Every call may fail."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    async def start(self) -> None:
        """Open underlying resources. No-op by default."""

    async def stop(self) -> None:
        """Release underlying resources. No-op by default."""


class MemoryKVMap(KVMap):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class SqliteKVMap(KVMap):
    """KV cache persisted in a SQLite file."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._db.commit()
        logger.info(f"KV cache initialized at {self.db_path}")

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("KV cache not started")
        return self._db

    async def get(self, key: str) -> str | None:
        async with self._conn().execute(
            "SELECT value FROM kv WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        db = self._conn()
        await db.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (key, value, time.time()),
        )
        await db.commit()

    async def delete(self, key: str) -> None:
        db = self._conn()
        await db.execute("DELETE FROM kv WHERE key = ?", (key,))
        await db.commit()


def create_kv_map(backend: str, path: str) -> KVMap:
    """Build the configured backend (``sqlite`` or ``memory``)."""
    if backend == "memory":
        return MemoryKVMap()
    if backend == "sqlite":
        return SqliteKVMap(path)
    raise ValueError(f"Unknown KV backend: {backend}")
