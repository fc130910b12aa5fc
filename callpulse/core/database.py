"""
Async PostgreSQL connection pool for the durable cache tier.

The only relational state CallPulse keeps is the mirrored cache envelope table
(see callpulse/core/storage.py). The pool is created lazily from DATABASE_URL;
deployments without a database fall back to the in-process store and never
touch this module.

Key Components:
- Global connection pool (_pool), created by init_db()
- close_db(): graceful shutdown, idempotent
- ensure_cache_table(): creates the envelope table if missing

Connection Pool Configuration:
- min_size: 1
- max_size: 5
- command_timeout: 30 seconds

Usage:
    pool = await init_db()
    await ensure_cache_table(pool, settings.cache_table)
    ...
    await close_db()
"""

import logging
import re
from typing import Optional

import asyncpg
from asyncpg import Pool

from callpulse.core.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Global Pool
# =============================================================================

_pool: Optional[Pool] = None

_TABLE_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


async def init_db(dsn: Optional[str] = None) -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: an existing pool is returned unchanged.

    Args:
        dsn: Connection string; defaults to Settings.database_url.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        ValueError: If no connection string is configured.
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        dsn = dsn or get_settings().database_url
        if not dsn:
            raise ValueError("DATABASE_URL is not configured")

        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=5,
            command_timeout=30,
        )
        logger.info("Database connection pool initialized")

    return _pool


async def close_db() -> None:
    """Close the pool gracefully. Safe to call when no pool exists."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")


async def ensure_cache_table(pool: Pool, table: str) -> None:
    """
    Create the cache envelope table when it does not exist yet.

    Args:
        pool: Connection pool to use.
        table: Table name; must be a plain SQL identifier.

    Raises:
        ValueError: If `table` is not a plain identifier.
    """
    if not _TABLE_NAME.match(table):
        raise ValueError(f"Invalid cache table name: {table!r}")

    async with pool.acquire() as conn:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
