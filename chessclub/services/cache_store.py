"""
Tag-indexed TTL cache for derived views.

Every cached value is a JSON-ready payload that can be rebuilt from the
ledger and roster, so losing cache contents only costs latency. Expired
entries are kept for a retention window so that the quota guard can still
serve them while the backing store is unavailable.

Two backends share one interface:
- InMemoryCacheBackend: per-process dict with a size cap (default)
- RedisCacheBackend: redis.asyncio client, one ``tag:{tag}`` set per tag
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from chessclub.config import Config
from chessclub.utils.exceptions import CacheError
from chessclub.utils.redis_utils import RedisUtils

logger = logging.getLogger(__name__)

TAG_SET_TTL_SECONDS = 86400


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    tags: FrozenSet[str]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCacheBackend:
    """Process-local backend using the dict + timestamp + lock pattern."""

    def __init__(self, max_entries: int = None, stale_retention: int = None,
                 clock: Callable[[], float] = time.time):
        self._cache: Dict[str, CacheEntry] = {}
        self._cache_timestamps: Dict[str, float] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._cache_max_size = max_entries or Config.CACHE_MAX_ENTRIES
        self._stale_retention = (
            stale_retention if stale_retention is not None else Config.CACHE_STALE_RETENTION_SECONDS
        )
        self._cache_lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._cache_lock:
            return self._cache.get(key)

    async def set(self, entry: CacheEntry):
        await self._cleanup_cache()
        async with self._cache_lock:
            self._drop(entry.key)
            self._cache[entry.key] = entry
            self._cache_timestamps[entry.key] = self._clock()
            for tag in entry.tags:
                self._tag_index.setdefault(tag, set()).add(entry.key)

    async def delete(self, key: str) -> bool:
        async with self._cache_lock:
            return self._drop(key)

    async def delete_tagged(self, tags: Iterable[str]) -> List[str]:
        async with self._cache_lock:
            keys = set()
            for tag in tags:
                keys.update(self._tag_index.pop(tag, set()))
            return sorted(key for key in keys if self._drop(key))

    async def clear(self):
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()
            self._tag_index.clear()

    def __len__(self):
        return len(self._cache)

    def _drop(self, key: str) -> bool:
        entry = self._cache.pop(key, None)
        self._cache_timestamps.pop(key, None)
        if entry is None:
            return False
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    self._tag_index.pop(tag, None)
        return True

    async def _cleanup_cache(self):
        """Remove entries past their retention window and enforce size limits."""
        async with self._cache_lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._cache.items()
                if now >= entry.expires_at + self._stale_retention
            ]
            for key in expired_keys:
                self._drop(key)

            # Enforce size limit by removing oldest entries, leaving room for one insert
            overflow = len(self._cache) - self._cache_max_size + 1
            if overflow > 0:
                sorted_keys = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for key, _ in sorted_keys[:overflow]:
                    self._drop(key)


class RedisCacheBackend:
    """Shared backend. Entries are JSON envelopes; tags are Redis sets."""

    def __init__(self, client, stale_retention: int = None, clock: Callable[[], float] = time.time):
        self.client = client
        self._stale_retention = (
            stale_retention if stale_retention is not None else Config.CACHE_STALE_RETENTION_SECONDS
        )
        self._clock = clock

    @staticmethod
    def _tag_key(tag: str) -> str:
        return f"tag:{tag}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.client.get(key)
        if raw is None:
            return None
        envelope = json.loads(raw)
        return CacheEntry(
            key=key,
            value=envelope['value'],
            tags=frozenset(envelope.get('tags', [])),
            expires_at=float(envelope['expires_at']),
        )

    async def set(self, entry: CacheEntry):
        envelope = json.dumps({
            'value': entry.value,
            'tags': sorted(entry.tags),
            'expires_at': entry.expires_at,
        })
        ttl = max(1, math.ceil(entry.expires_at - self._clock())) + self._stale_retention
        pipe = self.client.pipeline()
        pipe.setex(entry.key, ttl, envelope)
        for tag in entry.tags:
            pipe.sadd(self._tag_key(tag), entry.key)
            pipe.expire(self._tag_key(tag), TAG_SET_TTL_SECONDS)
        await pipe.execute()

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(key))

    async def delete_tagged(self, tags: Iterable[str]) -> List[str]:
        keys = set()
        tag_keys = []
        for tag in tags:
            tag_keys.append(self._tag_key(tag))
            keys.update(await self.client.smembers(self._tag_key(tag)))
        if keys:
            await self.client.delete(*keys)
        if tag_keys:
            await self.client.delete(*tag_keys)
        return sorted(keys)

    async def clear(self):
        await self.client.flushdb()


class CacheStore:
    """TTL- and tag-indexed materialized-view cache in front of ledger reads."""

    def __init__(self, backend=None, clock: Callable[[], float] = time.time):
        self.backend = backend if backend is not None else InMemoryCacheBackend(clock=clock)
        self._clock = clock

    @classmethod
    async def create(cls) -> "CacheStore":
        """Use Redis when REDIS_URL is configured and reachable, else the in-process backend."""
        client = await RedisUtils.create_redis_client()
        if client is not None:
            logger.info("Cache store using Redis backend")
            return cls(RedisCacheBackend(client))
        logger.info("Cache store using in-memory backend")
        return cls(InMemoryCacheBackend())

    async def lookup(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        """Return the entry for ``key``. Expired entries are returned only with ``allow_stale``."""
        try:
            entry = await self.backend.get(key)
        except Exception as e:
            logger.warning(f"Cache GET failed for {key}: {e}")
            return None
        if entry is None:
            return None
        if entry.is_expired(self._clock()) and not allow_stale:
            return None
        return entry

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()):
        entry = CacheEntry(key=key, value=value, tags=frozenset(tags), expires_at=self._clock() + ttl)
        try:
            await self.backend.set(entry)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s, tags: {sorted(entry.tags)})")
        except Exception as e:
            logger.warning(f"Cache SET failed for {key}: {e}")

    async def fetch(
        self,
        key: str,
        ttl: int,
        tags: Iterable[str],
        producer: Callable[[], Awaitable[Any]]
    ) -> Tuple[Any, bool]:
        """Like ``get_or_populate`` but also reports whether the value came from the cache."""
        entry = await self.lookup(key)
        if entry is not None:
            logger.debug(f"Cache HIT: {key}")
            return entry.value, True

        logger.debug(f"Cache MISS: {key}")
        value = await producer()
        await self.set(key, value, ttl, tags)
        return value, False

    async def get_or_populate(
        self,
        key: str,
        ttl: int,
        tags: Iterable[str],
        producer: Callable[[], Awaitable[Any]]
    ) -> Any:
        """
        Return the cached value for ``key`` or populate it from ``producer``.

        Concurrent misses may each call the producer; producers are pure
        functions of ledger state so the last write wins harmlessly.
        """
        value, _ = await self.fetch(key, ttl, tags, producer)
        return value

    async def invalidate_key(self, key: str) -> bool:
        try:
            removed = await self.backend.delete(key)
        except Exception as e:
            raise CacheError("invalidate_key", str(e)) from e
        logger.info(f"Cache INVALIDATED key: {key}")
        return removed

    async def invalidate_by_tags(self, tags: Iterable[str]) -> List[str]:
        """Remove every entry carrying any of ``tags``. Returns the removed keys."""
        tags = list(tags)
        try:
            keys = await self.backend.delete_tagged(tags)
        except Exception as e:
            raise CacheError("invalidate_by_tags", str(e)) from e
        logger.info(f"Cache INVALIDATED tags {tags}: {len(keys)} key(s)")
        return keys

    async def clear(self):
        await self.backend.clear()
        logger.info("Cache cleared.")
