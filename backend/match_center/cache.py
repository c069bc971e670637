"""Tagged key-value cache over Redis.

Every failure of the backing store is logged and treated as a cache miss so
that a Redis outage degrades to direct database reads instead of errors.
"""
import json
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from . import config

logger = logging.getLogger(__name__)

# TTL policy in seconds, matched by key prefix (longest prefix wins)
CACHE_TTL = {
    "map-templates:list": 60,
    "tournament-templates:list": 60,
    "players:list": 120,
    "families:list": 120,
    "tournaments:list": 120,
    "map-template": 10 * 60,
    "tournament-template": 10 * 60,
    "player": 15 * 60,
    "family": 15 * 60,
    "tournament": 15 * 60,
    "stats:tournament": 5 * 60,
}
DEFAULT_TTL = 60


class CacheTags:
    @staticmethod
    def entity(prefix: str, entity_id: str) -> str:
        return f"{prefix}:{entity_id}"

    @staticmethod
    def entity_list(prefix: str) -> str:
        return f"{prefix}s:list"

    @staticmethod
    def tournament_slug(slug: str) -> str:
        return f"tournament:slug:{slug}"


def ttl_for(key: str) -> int:
    best = None
    for prefix in CACHE_TTL:
        if key == prefix or key.startswith(prefix + ":"):
            if best is None or len(prefix) > len(best):
                best = prefix
    return CACHE_TTL[best] if best else DEFAULT_TTL


def _tag_key(tag: str) -> str:
    return f"tag:{tag}"


class TaggedCache:
    def __init__(self, client: Optional[aioredis.Redis] = None):
        self.client = client
        self._inflight = {}

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(self, key: str) -> Any:
        if not self.enabled:
            return None
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Iterable[str] = ()):
        if not self.enabled:
            return
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(key, json.dumps(value, default=str), ex=ttl or ttl_for(key))
                for tag in tags:
                    pipe.sadd(_tag_key(tag), key)
                await pipe.execute()
        except RedisError as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def get_or_set(self, key: str, loader: Callable[[], Awaitable[Any]], ttl: Optional[int] = None,
                         tags: Iterable[str] = ()) -> Any:
        cached = await self.get(key)
        if cached is not None:
            return cached
        if not self.enabled:
            return await loader()

        # Concurrent misses on one key share a single loader call
        pending = self._inflight.get(key)
        if pending is not None:
            return await pending

        async def load():
            value = await loader()
            if value is not None:
                await self.set(key, value, ttl=ttl, tags=tags)
            return value

        task = asyncio.ensure_future(load())
        self._inflight[key] = task
        try:
            return await task
        finally:
            self._inflight.pop(key, None)

    async def invalidate(self, key: str):
        if not self.enabled:
            return
        try:
            await self.client.delete(key)
            logger.debug(f"Cache invalidated key {key}")
        except RedisError as e:
            logger.warning(f"Cache invalidate failed for {key}: {e}")

    async def invalidate_by_tags(self, tags: Iterable[str]):
        if not self.enabled:
            return
        tags = list(tags)
        try:
            keys = set()
            for tag in tags:
                keys.update(await self.client.smembers(_tag_key(tag)))
            async with self.client.pipeline(transaction=True) as pipe:
                if keys:
                    pipe.delete(*keys)
                for tag in tags:
                    pipe.delete(_tag_key(tag))
                await pipe.execute()
            logger.debug(f"Cache invalidated tags {tags}, {len(keys)} keys deleted")
        except RedisError as e:
            logger.warning(f"Cache invalidate failed for tags {tags}: {e}")

    async def increment_list_revision(self, key: str) -> int:
        if not self.enabled:
            return time.time_ns()
        try:
            return await self.client.incr(key)
        except RedisError as e:
            logger.warning(f"Cache revision bump failed for {key}: {e}")
            return time.time_ns()

    async def flush(self):
        if not self.enabled:
            return
        try:
            await self.client.flushdb()
        except RedisError as e:
            logger.warning(f"Cache flush failed: {e}")


def create_cache() -> TaggedCache:
    if config.CACHE_DRIVER == "disabled":
        logger.info("Cache disabled by configuration")
        return TaggedCache(None)
    return TaggedCache(aioredis.from_url(config.REDIS_URL, decode_responses=True))
