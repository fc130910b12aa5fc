"""
Durable key-value stores backing the persisted tier of TieredCache.

The cache only needs three operations from its durable collaborator:
read(key) -> Optional[str], write(key, value) and remove(key). Values are
JSON-serialized cache envelopes; the store itself never interprets them.

Implementations:
- MemoryCacheStore: dict-backed, process-local. Default when no database
  is configured, and the store used by the test suite.
- PostgresCacheStore: one row per key in a single table, via asyncpg.
"""

import logging
import re
from typing import Dict, Optional, Protocol, runtime_checkable

from asyncpg import Pool

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@runtime_checkable
class CacheStore(Protocol):
    """Async key-value interface consumed by TieredCache."""

    async def read(self, key: str) -> Optional[str]:
        ...

    async def write(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class MemoryCacheStore:
    """Process-local CacheStore. Contents survive cache instances, not restarts."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def write(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def __len__(self) -> int:
        return len(self.data)


class PostgresCacheStore:
    """
    CacheStore persisted in PostgreSQL.

    Uses an upsert per write so a key always maps to its most recent envelope.
    The table is created by callpulse.core.database.ensure_cache_table.

    Args:
        pool: asyncpg connection pool.
        table: Envelope table name (plain identifier).
    """

    def __init__(self, pool: Pool, table: str = 'callpulse_cache'):
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid cache table name: {table!r}")
        self._pool = pool
        self._table = table

    async def read(self, key: str) -> Optional[str]:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                f"SELECT value FROM {self._table} WHERE key = $1", key
            )

    async def write(self, key: str, value: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self._table} (key, value, updated_at)
                VALUES ($1, $2, now())
                ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                """,
                key,
                value,
            )

    async def remove(self, key: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(f"DELETE FROM {self._table} WHERE key = $1", key)
