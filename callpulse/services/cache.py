"""
Tiered Cache

One cache with three layers:
1. Hot map: in-process dict of CacheEntry, read synchronously by get()/has().
   Lookups never block and never raise.
2. Single-flight fetch: get_or_set() shares one in-flight fetch per key
   between all concurrent callers; they all observe the same result or error.
3. Durable mirror: entries whose JSON envelope is below a size ceiling are
   written to a CacheStore (see callpulse.core.storage) on flush() and loaded
   back by rehydrate() on start.

Entry lifecycle:
    Fresh --(ttl elapsed)--> Expired --(next access)--> removed
    Fresh --(size pressure)--> Evicted

Eviction (when a new key arrives at capacity):
1. Purge every expired entry.
2. If still at capacity, remove entries ordered by (priority low->high,
   created_at oldest first) until 20% of capacity has been freed.

Durable layout (all keys prefixed):
    __version__   cache format version; a mismatch wipes the store
    __index__     JSON list of mirrored keys
    <key>         JSON envelope {version, data, created_at, expires_at, priority}

Mirrored data is stored in its JSON form, so values rehydrated after a
restart are plain dicts/lists; typed consumers re-validate them.
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Set,
    TypeVar,
)

from pydantic import TypeAdapter

from callpulse.core.errors import CacheCorruption, with_timeout
from callpulse.core.storage import CacheStore
from callpulse.models import CachePriority, CacheStats

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Sentinel for "no value"; None is a legitimate cached value
MISSING: Any = object()

EVICTION_FRACTION: float = 0.2
VERSION_KEY: str = '__version__'
INDEX_KEY: str = '__index__'

_JSON = TypeAdapter(Any)


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its timing and priority metadata."""
    data: T
    created_at: float
    expires_at: float
    priority: CachePriority = CachePriority.MEDIUM

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TieredCache:
    """
    Size-bounded TTL cache with single-flight fetches and a durable mirror.

    Args:
        max_size: Hot map capacity.
        default_ttl: Seconds an entry stays fresh when set() gets no ttl.
        store: Durable CacheStore; None keeps the cache process-local.
        version: Format tag stored alongside mirrored entries.
        key_prefix: Prefix applied to every durable-store key.
        persist_max_bytes: Envelopes larger than this stay hot-only.
        fetch_timeout: Default timeout for get_or_set fetchers (None = unbounded).
        clock: Wall-clock source in seconds; injectable for tests.
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 300.0,
        store: Optional[CacheStore] = None,
        version: str = '1.0.0',
        key_prefix: str = 'callpulse:',
        persist_max_bytes: int = 5 * 1024 * 1024,
        fetch_timeout: Optional[float] = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.store = store
        self.version = version
        self.key_prefix = key_prefix
        self.persist_max_bytes = persist_max_bytes
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        # key -> serialized envelope, or None for a pending removal
        self._pending: Dict[str, Optional[str]] = {}
        self._persisted: Set[str] = set()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_settings(cls, settings, store: Optional[CacheStore] = None) -> 'TieredCache':
        return cls(
            max_size=settings.cache_max_size,
            default_ttl=settings.cache_default_ttl_seconds,
            store=store,
            version=settings.cache_version,
            key_prefix=settings.cache_key_prefix,
            persist_max_bytes=settings.cache_persist_max_bytes,
            fetch_timeout=settings.cache_fetch_timeout_seconds,
        )

    # =========================================================================
    # Synchronous API
    # =========================================================================

    def get(self, key: str) -> Optional[Any]:
        """Return the fresh value for `key`, or None. Expired entries are removed."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            self._drop(key)
            self._misses += 1
            return None
        self._hits += 1
        return entry.data

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._drop(key)
            return False
        return True

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> None:
        """
        Store `data` under `key` for `ttl` seconds (default_ttl when None).

        Raises:
            ValueError: If ttl is not positive.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()

        entry = CacheEntry(data=data, created_at=now, expires_at=now + ttl, priority=CachePriority(priority))
        self._entries[key] = entry
        self._stage(key, entry)

    def delete(self, key: str) -> bool:
        """Remove `key` from every tier. Returns whether it was in the hot map."""
        existed = key in self._entries
        self._drop(key)
        return existed

    def clear(self) -> None:
        for key in list(self._entries):
            self._drop(key)
        for key in list(self._persisted):
            self._pending[key] = None

    def keys(self) -> List[str]:
        return list(self._entries)

    def purge_expired(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._drop(key)
        return len(expired)

    def stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            pending_writes=len(self._pending),
            hit_rate=(self._hits / lookups * 100) if lookups else 0.0,
            keys=self.keys(),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    # =========================================================================
    # Single-flight fetch
    # =========================================================================

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        priority: CachePriority = CachePriority.HIGH,
        *,
        force: bool = False,
        use_stale: bool = False,
        fallback: Any = MISSING,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Return the fresh cached value or fetch, cache and return it.

        Concurrent callers for the same key share a single fetch. A failed
        fetch is not cached; every waiter sees the same error unless it
        resolves to a fallback.

        Args:
            key: Cache key.
            fetcher: Zero-argument coroutine function producing the value.
            ttl: Freshness of the fetched value (default_ttl when None).
            priority: Priority of the fetched entry.
            force: Fetch even when a fresh value is cached.
            use_stale: On failure, return the previously cached value if any.
            fallback: On failure, return this value (after stale data).
            timeout: Fetch timeout; defaults to fetch_timeout.

        Raises:
            FetchTimeout: If the fetch times out and no fallback applies.
            Exception: Whatever the fetcher raised, when no fallback applies.
        """
        now = self._clock()
        entry = self._entries.get(key)
        stale = entry.data if entry is not None else MISSING

        if entry is not None and not entry.is_expired(now) and not force:
            self._hits += 1
            return entry.data
        if entry is not None and entry.is_expired(now):
            self._drop(key)
        self._misses += 1

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, fetcher, ttl, priority, timeout))
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._settle(k, done))
        else:
            logger.debug(f"Joining in-flight fetch for cache key '{key}'")

        try:
            return await asyncio.shield(task)
        except Exception as e:
            if use_stale and stale is not MISSING:
                logger.warning(f"Serving stale value for '{key}' after fetch failure: {e}")
                return stale
            if fallback is not MISSING:
                logger.warning(f"Serving fallback value for '{key}' after fetch failure: {e}")
                return fallback
            raise

    async def _fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float],
        priority: CachePriority,
        timeout: Optional[float],
    ) -> T:
        timeout = self.fetch_timeout if timeout is None else timeout
        data = await with_timeout(fetcher(), timeout, f"Fetch for cache key '{key}'")
        self.set(key, data, ttl=ttl, priority=priority)
        await self.flush()
        return data

    def _settle(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    # =========================================================================
    # Durable tier
    # =========================================================================

    async def flush(self) -> int:
        """
        Write pending changes to the durable store.

        Store failures are logged and the change stays pending for the next
        flush. Returns the number of changes written.
        """
        if self.store is None or not self._pending:
            return 0

        pending, self._pending = self._pending, {}
        written = 0
        for key, payload in pending.items():
            known = key in self._persisted
            if payload is not None:
                # marked before the await so a delete landing mid-write stages a removal
                self._persisted.add(key)
            try:
                if payload is None:
                    await self.store.remove(self._storage_key(key))
                    self._persisted.discard(key)
                else:
                    await self.store.write(self._storage_key(key), payload)
                written += 1
            except Exception as e:
                logger.warning(f"Durable cache write failed for '{key}': {e}")
                if payload is not None and not known and key not in self._pending:
                    self._persisted.discard(key)
                self._pending.setdefault(key, payload)

        try:
            await self.store.write(self._storage_key(VERSION_KEY), self.version)
            await self.store.write(self._storage_key(INDEX_KEY), json.dumps(sorted(self._persisted)))
        except Exception as e:
            logger.warning(f"Durable cache index write failed: {e}")

        logger.debug(f"Flushed {written} cache changes to durable store")
        return written

    async def rehydrate(self) -> int:
        """
        Load mirrored entries from the durable store.

        A version mismatch wipes the store. Corrupt or expired entries are
        dropped from the store. Never raises.

        Returns:
            Number of entries loaded into the hot map.
        """
        if self.store is None:
            return 0

        try:
            stored_version = await self.store.read(self._storage_key(VERSION_KEY))
            keys = self._decode_index(await self.store.read(self._storage_key(INDEX_KEY)))
        except Exception as e:
            logger.warning(f"Durable cache unavailable during rehydration: {e}")
            return 0

        if stored_version != self.version:
            await self._wipe(keys, stored_version)
            return 0

        now = self._clock()
        loaded: List[str] = []
        for key in keys:
            try:
                raw = await self.store.read(self._storage_key(key))
                entry = self._decode_entry(key, raw, now)
            except CacheCorruption as e:
                logger.warning(f"Dropping corrupt cache entry: {e}")
                entry = None
            except Exception as e:
                logger.warning(f"Durable cache read failed for '{key}': {e}")
                continue

            if entry is None:
                self._pending[key] = None
                continue
            if key not in self._entries:
                if len(self._entries) >= self.max_size:
                    self._evict()
                self._entries[key] = entry
            loaded.append(key)

        self._persisted = set(loaded)
        await self.flush()
        logger.info(f"Rehydrated {len(loaded)} cache entries from durable store")
        return len(loaded)

    async def _wipe(self, keys: List[str], stored_version: Optional[str]) -> None:
        if stored_version is not None:
            logger.info(
                f"Cache version changed ({stored_version} -> {self.version}); wiping durable store"
            )
        try:
            for key in keys:
                await self.store.remove(self._storage_key(key))
            await self.store.remove(self._storage_key(INDEX_KEY))
            await self.store.write(self._storage_key(VERSION_KEY), self.version)
        except Exception as e:
            logger.warning(f"Durable cache wipe failed: {e}")
        self._persisted.clear()

    def _storage_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @staticmethod
    def _decode_index(raw: Optional[str]) -> List[str]:
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except ValueError:
            logger.warning("Durable cache index is corrupt; ignoring it")
            return []
        if not isinstance(keys, list):
            return []
        return [key for key in keys if isinstance(key, str)]

    def _decode_entry(self, key: str, raw: Optional[str], now: float) -> Optional[CacheEntry]:
        """Decode an envelope; None when absent or expired."""
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
        except ValueError as e:
            raise CacheCorruption(key, f"invalid JSON ({e})") from e
        if not isinstance(envelope, dict):
            raise CacheCorruption(key, "envelope is not an object")
        if envelope.get('version') != self.version:
            raise CacheCorruption(key, f"version {envelope.get('version')!r} != {self.version!r}")
        try:
            entry = CacheEntry(
                data=envelope['data'],
                created_at=float(envelope['created_at']),
                expires_at=float(envelope['expires_at']),
                priority=CachePriority(envelope.get('priority', CachePriority.MEDIUM.value)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruption(key, f"malformed envelope ({e})") from e
        if entry.is_expired(now):
            return None
        return entry

    # =========================================================================
    # Internals
    # =========================================================================

    def _stage(self, key: str, entry: CacheEntry) -> None:
        if self.store is None:
            return
        try:
            payload = json.dumps({
                'version': self.version,
                'data': _JSON.dump_python(entry.data, mode='json'),
                'created_at': entry.created_at,
                'expires_at': entry.expires_at,
                'priority': entry.priority.value,
            }, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.debug(f"Cache entry '{key}' is not serializable; keeping it in memory only: {e}")
            self._unstage(key)
            return

        if len(payload.encode('utf-8')) > self.persist_max_bytes:
            logger.debug(f"Cache entry '{key}' exceeds {self.persist_max_bytes} bytes; keeping it in memory only")
            self._unstage(key)
            return
        self._pending[key] = payload

    def _unstage(self, key: str) -> None:
        if key in self._persisted:
            self._pending[key] = None
        else:
            self._pending.pop(key, None)

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        if self.store is not None:
            self._unstage(key)

    def _evict(self) -> None:
        self.purge_expired()
        if len(self._entries) < self.max_size:
            return

        target = max(1, math.ceil(self.max_size * EVICTION_FRACTION))
        victims = sorted(
            self._entries.items(),
            key=lambda item: (item[1].priority.rank, item[1].created_at),
        )[:target]
        for key, _ in victims:
            self._drop(key)
            self._evictions += 1
        logger.debug(f"Evicted {len(victims)} cache entries under size pressure")
