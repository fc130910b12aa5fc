"""
Core infrastructure package for the CallPulse backend.

Provides:
- Configuration management via pydantic-settings
- Error taxonomy and the async timeout wrapper
- Durable key-value stores for the cache tier (in-memory, asyncpg)
- Async PostgreSQL connection pool lifecycle

FastAPI dependencies live in callpulse.core.dependencies; they are not
re-exported here because they import the service layer.

Usage Examples:
    from callpulse.core import get_settings, MemoryCacheStore

    settings = get_settings()
    store = MemoryCacheStore()
"""

# =============================================================================
# Configuration Exports
# =============================================================================

from callpulse.core.config import Settings, get_settings

# =============================================================================
# Error Exports
# =============================================================================

from callpulse.core.errors import (
    CallPulseError,
    UpstreamUnavailable,
    FetchTimeout,
    CacheCorruption,
    with_timeout,
)

# =============================================================================
# Storage Exports
# =============================================================================

from callpulse.core.storage import CacheStore, MemoryCacheStore, PostgresCacheStore
from callpulse.core.database import init_db, close_db, ensure_cache_table


__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "CallPulseError",
    "UpstreamUnavailable",
    "FetchTimeout",
    "CacheCorruption",
    "with_timeout",
    # Storage
    "CacheStore",
    "MemoryCacheStore",
    "PostgresCacheStore",
    "init_db",
    "close_db",
    "ensure_cache_table",
]
