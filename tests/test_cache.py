import json

import pytest

from shelf_recommender.cache import MemoryResultCache, RedisResultCache, make_cache_key
from shelf_recommender.models import DetectedBook, RecommendationOptions, UserPreferences

from conftest import FakeClock

TWO_HOURS = 2 * 60 * 60


class _FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key


def test_cache_key_ignores_confidence_and_series():
    prefs, opts = UserPreferences(), RecommendationOptions()
    a = [DetectedBook(title="Dune", author="Frank Herbert", confidence=0.9, series="Dune")]
    b = [DetectedBook(title="Dune", author="Frank Herbert", confidence=0.4)]
    assert make_cache_key(a, prefs, opts) == make_cache_key(b, prefs, opts)


def test_cache_key_ignores_genre_order():
    opts = RecommendationOptions()
    ab = UserPreferences(favorite_genres=["Fantasy", "Mystery"], avoid_genres=["Horror", "Romance"])
    ba = UserPreferences(favorite_genres=["Mystery", "Fantasy"], avoid_genres=["Romance", "Horror"])
    books = [DetectedBook(title="Dune")]
    assert make_cache_key(books, ab, opts) == make_cache_key(books, ba, opts)


def test_cache_key_changes_with_inputs():
    books = [DetectedBook(title="Dune")]
    base = make_cache_key(books, UserPreferences(), RecommendationOptions())
    assert base != make_cache_key(books, UserPreferences(favorite_genres=["Fantasy"]), RecommendationOptions())
    assert base != make_cache_key(books, UserPreferences(), RecommendationOptions(max_recommendations=3))
    assert base != make_cache_key([DetectedBook(title="Emma")], UserPreferences(), RecommendationOptions())


@pytest.mark.asyncio
async def test_memory_cache_hit_then_expiry():
    clock = FakeClock()
    cache = MemoryResultCache(ttl_seconds=TWO_HOURS, clock=clock)
    await cache.set("k", {"v": 1})

    clock.advance(TWO_HOURS - 1)
    assert await cache.get("k") == {"v": 1}

    clock.advance(1)
    assert await cache.get("k") is None
    # expired entries are evicted on read
    assert await cache.size() == 0


@pytest.mark.asyncio
async def test_memory_cache_clear_returns_count():
    cache = MemoryResultCache(ttl_seconds=TWO_HOURS, clock=FakeClock())
    await cache.set("a", {})
    await cache.set("b", {})
    assert await cache.clear() == 2
    assert await cache.get("a") is None


@pytest.mark.asyncio
async def test_redis_cache_round_trip_and_created_at_check():
    clock = FakeClock()
    fake = _FakeRedis()
    cache = RedisResultCache(client=fake, ttl_seconds=TWO_HOURS, prefix="t:", clock=clock)

    await cache.set("k", {"v": 1})
    assert fake.ttls["t:k"] == TWO_HOURS
    assert json.loads(fake.store["t:k"])["created_at"] == clock.now
    assert await cache.get("k") == {"v": 1}

    # Redis has not expired the key yet, but the entry is stale
    clock.advance(TWO_HOURS)
    assert await cache.get("k") is None
    assert "t:k" not in fake.store


@pytest.mark.asyncio
async def test_redis_cache_clear_and_size():
    fake = _FakeRedis()
    fake.store["other:x"] = "keep"
    cache = RedisResultCache(client=fake, ttl_seconds=TWO_HOURS, prefix="t:", clock=FakeClock())
    await cache.set("a", {})
    await cache.set("b", {})

    assert await cache.size() == 2
    assert await cache.clear() == 2
    assert fake.store == {"other:x": "keep"}


@pytest.mark.asyncio
async def test_redis_unreadable_entry_is_a_miss():
    fake = _FakeRedis()
    fake.store["t:k"] = "not json"
    cache = RedisResultCache(client=fake, ttl_seconds=TWO_HOURS, prefix="t:", clock=FakeClock())
    assert await cache.get("k") is None
    assert "t:k" not in fake.store
