"""Content-addressed result cache for recommendation envelopes.

Keys are a sha256 over the request inputs that influence the result (books
reduced to title/author/genre, preferences, options). Values are the envelope
as a JSON-compatible dict. Entries expire ``ttl_seconds`` after creation; the
check happens on read, an expired entry is evicted and reported as a miss,
and there is no background sweep.

Two backends:

* ``MemoryResultCache``: a dict guarded by a ``threading.Lock`` (default).
* ``RedisResultCache``: ``SETEX`` with the TTL; the stored ``created_at`` is
  also checked on read so clock skew never serves a stale value.

Both take an injectable ``clock`` (seconds, ``time.time`` by default).
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple

import redis.asyncio as redis

from common.metrics import record_cache_lookup
from common.settings import settings as S
from common.structured_logging import get_logger

from .models import DetectedBook, RecommendationOptions, UserPreferences

logger = get_logger(__name__)

Clock = Callable[[], float]

SET_VALUED_PREFERENCES = ("favorite_genres", "avoid_genres", "preferred_authors", "avoid_authors")


def make_cache_key(
    books: Sequence[DetectedBook],
    preferences: UserPreferences,
    options: RecommendationOptions,
) -> str:
    """Stable key; detection confidence, series and shelf position are ignored
    except that book order is kept."""
    prefs = preferences.model_dump(mode="json")
    for field in SET_VALUED_PREFERENCES:
        prefs[field] = sorted(prefs[field])
    payload = {
        "books": [{"title": b.title, "author": b.author, "genre": b.genre} for b in books],
        "preferences": prefs,
        "options": options.model_dump(mode="json"),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultCache(Protocol):
    ttl_seconds: int

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    async def clear(self) -> int:
        ...

    async def size(self) -> int:
        ...


class MemoryResultCache:
    def __init__(self, ttl_seconds: int | None = None, clock: Clock | None = None):
        self.ttl_seconds = ttl_seconds or S.cache_ttl_seconds
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                record_cache_lookup("miss")
                return None
            created_at, value = entry
            if now - created_at >= self.ttl_seconds:
                del self._entries[key]
                record_cache_lookup("expired")
                return None
        record_cache_lookup("hit")
        return value

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    async def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    async def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisResultCache:
    """Redis-backed cache; Redis errors degrade to cache misses."""

    def __init__(
        self,
        client: "redis.Redis | None" = None,
        ttl_seconds: int | None = None,
        prefix: str | None = None,
        clock: Clock | None = None,
    ):
        self._client = client
        self.ttl_seconds = ttl_seconds or S.cache_ttl_seconds
        self.prefix = prefix if prefix is not None else S.cache_key_prefix
        self._clock = clock or time.time

    def _get_client(self) -> "redis.Redis":
        if self._client is None:
            self._client = redis.from_url(
                S.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=S.redis_connection_timeout,
            )
        return self._client

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        client = self._get_client()
        try:
            raw = await client.get(self.prefix + key)
        except redis.RedisError:
            logger.warning("Redis read failed, treating as cache miss", exc_info=True)
            record_cache_lookup("miss")
            return None
        if raw is None:
            record_cache_lookup("miss")
            return None

        try:
            entry = json.loads(raw)
            created_at, value = float(entry["created_at"]), entry["value"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable cache entry", extra={"key": key})
            await self._delete(key)
            record_cache_lookup("miss")
            return None

        if self._clock() - created_at >= self.ttl_seconds:
            await self._delete(key)
            record_cache_lookup("expired")
            return None
        record_cache_lookup("hit")
        return value

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        client = self._get_client()
        entry = json.dumps({"created_at": self._clock(), "value": value})
        try:
            await client.setex(self.prefix + key, self.ttl_seconds, entry)
        except redis.RedisError:
            logger.warning("Failed to write cache entry to Redis", exc_info=True)

    async def clear(self) -> int:
        client = self._get_client()
        count = 0
        try:
            async for k in client.scan_iter(match=f"{self.prefix}*"):
                count += await client.delete(k)
        except redis.RedisError:
            logger.warning("Failed to clear Redis cache", exc_info=True)
        return count

    async def size(self) -> int:
        client = self._get_client()
        count = 0
        try:
            async for _ in client.scan_iter(match=f"{self.prefix}*"):
                count += 1
        except redis.RedisError:
            logger.warning("Failed to size Redis cache", exc_info=True)
        return count

    async def _delete(self, key: str) -> None:
        try:
            await self._get_client().delete(self.prefix + key)
        except redis.RedisError:
            logger.warning("Failed to evict cache entry", exc_info=True)


def make_result_cache(settings=None, clock: Clock | None = None) -> ResultCache:
    """Build the cache backend selected by ``CACHE_BACKEND``."""
    cfg = settings or S
    if cfg.cache_backend == "redis":
        return RedisResultCache(
            ttl_seconds=cfg.cache_ttl_seconds, prefix=cfg.cache_key_prefix, clock=clock
        )
    return MemoryResultCache(ttl_seconds=cfg.cache_ttl_seconds, clock=clock)
