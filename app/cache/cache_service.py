"""Redis-backed cache for hot read views (per-doctor queue snapshots).

Cache failures are logged and treated as misses; the database stays the
source of truth.
"""
import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis

from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    def __init__(self, url: Optional[str] = None):
        self.redis_url = url or settings.REDIS_URL
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self) -> Optional[aioredis.Redis]:
        if not self.redis:
            try:
                self.redis = aioredis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
                logger.info(f"Redis cache client created for {self.redis_url}")
            except Exception as e:
                logger.error(f"Failed to create Redis client: {e}")
        return self.redis

    async def get(self, key: str) -> Optional[str]:
        client = await self.connect()
        try:
            return await client.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        client = await self.connect()
        try:
            await client.set(key, value, ex=ttl or settings.QUEUE_CACHE_TTL_SECONDS)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.set(key, json.dumps(value, default=str), ttl=ttl)

    async def delete(self, key: str) -> None:
        client = await self.connect()
        try:
            await client.delete(key)
        except Exception as e:
            # A stale snapshot expires with its TTL
            logger.warning(f"Cache invalidation failed for {key}: {e}")

    async def ping(self) -> bool:
        client = await self.connect()
        try:
            return bool(await client.ping())
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        if self.redis:
            await self.redis.close()
            self.redis = None


# Singleton instance
redis_cache = RedisCache()
