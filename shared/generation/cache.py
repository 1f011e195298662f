"""
Response cache for generated text.

Keys are a sha256 over the normalized effective parameters, so identical
requests hit the same entry no matter how or when they were built. The TTL
grows with the response's token count (20s per token, clamped to
30 minutes .. 24 hours): larger responses are costlier to regenerate.

Two backing stores:
- In-memory, size-bounded (default, for dev/testing)
- Redis (for production across service restarts)

The cache is best-effort. Any backing store failure is logged and treated
as a miss; it never fails a dispatch.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable

import redis.asyncio as aioredis
from pydantic import BaseModel, ValidationError

from shared.generation.models import EffectiveParameters, GenerationResult
from shared.observability.metrics import cache_lookups

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "textgen:cache"
TTL_PER_TOKEN_S = 20
MIN_TTL_S = 30 * 60
MAX_TTL_S = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 10_000

# Returned by ResponseCache._read when the backing store raised.
_READ_FAILED = object()


def cache_key(params: EffectiveParameters) -> str:
    """Derive the cache key for a set of effective parameters."""
    raw = json.dumps(
        {
            "backend": params.backend.value,
            "model": params.model,
            "temperature": float(params.temperature),
            "max_tokens": int(params.max_tokens),
            "prompt": params.prompt,
            "system_prompt": params.system_prompt,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return f"{CACHE_KEY_PREFIX}:{hashlib.sha256(raw.encode('utf-8')).hexdigest()}"


def cache_ttl(total_tokens: int) -> int:
    return min(MAX_TTL_S, max(MIN_TTL_S, total_tokens * TTL_PER_TOKEN_S))


class CacheEntry(BaseModel):
    key: str
    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class CacheBackend(ABC):
    """Backing store contract. Implementations may raise; ResponseCache absorbs it."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    async def set(self, entry: CacheEntry, ttl: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    async def close(self) -> None:
        return None


class InMemoryCacheBackend(CacheBackend):
    """
    Process-local store. Expired entries are swept on every write and the
    oldest entries are dropped once `max_entries` is reached.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._clock = clock
        self.max_entries = max_entries

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def set(self, entry: CacheEntry, ttl: int) -> None:
        self._purge_expired()
        self._entries.pop(entry.key, None)
        self._entries[entry.key] = entry
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Stores each CacheEntry as JSON with a native Redis expiry."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, redis_url: str) -> RedisCacheBackend:
        return cls(aioredis.from_url(redis_url, decode_responses=True))

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return CacheEntry.model_validate_json(raw)

    async def set(self, entry: CacheEntry, ttl: int) -> None:
        await self._redis.set(entry.key, entry.model_dump_json(), ex=ttl)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()


class ResponseCache:
    """Best-effort cache of GenerationResults over a CacheBackend."""

    def __init__(
        self,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend if backend is not None else InMemoryCacheBackend(clock=clock)
        self._clock = clock

    async def _read(self, key: str) -> CacheEntry | None | object:
        try:
            entry = await self._backend.get(key)
        except Exception:
            logger.warning(
                "Cache read failed for key %s; treating as miss",
                key[:24],
                exc_info=True,
            )
            return _READ_FAILED

        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    async def get(self, key: str) -> CacheEntry | None:
        entry = await self._read(key)
        return None if entry is _READ_FAILED else entry

    async def set(self, key: str, value: str, ttl: int) -> None:
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
        try:
            await self._backend.set(entry, ttl)
        except Exception:
            logger.warning("Cache write failed for key %s", key[:24], exc_info=True)

    async def lookup(self, key: str) -> GenerationResult | None:
        entry = await self._read(key)
        if entry is _READ_FAILED:
            cache_lookups.labels(result="error").inc()
            return None
        if entry is None:
            logger.debug("Generation cache MISS for key %s", key[:24])
            cache_lookups.labels(result="miss").inc()
            return None

        try:
            result = GenerationResult.model_validate_json(entry.value)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key[:24])
            cache_lookups.labels(result="error").inc()
            await self.evict(key)
            return None

        logger.debug("Generation cache HIT for key %s", key[:24])
        cache_lookups.labels(result="hit").inc()
        return result.model_copy(update={"cached": True})

    async def store(self, key: str, result: GenerationResult) -> int:
        """Write a fresh result through to the cache and return the TTL used."""
        ttl = cache_ttl(result.usage.total_tokens)
        await self.set(key, result.model_dump_json(exclude={"cached"}), ttl)
        return ttl

    async def evict(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except Exception:
            logger.warning("Cache eviction failed for key %s", key[:24], exc_info=True)

    async def close(self) -> None:
        try:
            await self._backend.close()
        except Exception:
            logger.warning("Error while closing cache backend", exc_info=True)


def create_cache_backend(redis_url: str | None = None) -> CacheBackend:
    if redis_url:
        return RedisCacheBackend.from_url(redis_url)
    return InMemoryCacheBackend()
