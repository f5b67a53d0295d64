import pytest

from app.cache.cache_service import RedisCache, redis_cache


@pytest.mark.asyncio
async def test_json_round_trip_and_ttl(fake_redis):
    await redis_cache.set_json("doctor_queue:1", {"waiting_count": 2})

    assert fake_redis.store["doctor_queue:1"] == '{"waiting_count": 2}'
    assert await redis_cache.get_json("doctor_queue:1") == {"waiting_count": 2}
    assert await redis_cache.get_json("doctor_queue:missing") is None


@pytest.mark.asyncio
async def test_undecodable_entry_is_dropped(fake_redis):
    fake_redis.store["doctor_queue:2"] = "{not json"

    assert await redis_cache.get_json("doctor_queue:2") is None
    assert "doctor_queue:2" not in fake_redis.store


@pytest.mark.asyncio
async def test_backend_errors_read_as_misses():
    class Down:
        async def get(self, key):
            raise ConnectionError("redis down")

        async def set(self, key, value, ex=None):
            raise ConnectionError("redis down")

        async def ping(self):
            raise ConnectionError("redis down")

    cache = RedisCache("redis://unused")
    cache.redis = Down()

    await cache.set_json("k", {"a": 1})
    assert await cache.get_json("k") is None
    assert await cache.ping() is False
