"""Redis-list backed queue feeding search index synchronisation jobs."""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from . import config

logger = logging.getLogger(__name__)


class SearchQueue:
    def __init__(self, client: Optional[aioredis.Redis] = None, name: str = config.SEARCH_QUEUE_NAME):
        self.client = client
        self.name = name

    async def enqueue(self, action: str, entity: str, entity_id: str, attempts: int = 0) -> bool:
        if self.client is None:
            return False
        job = {"action": action, "entity": entity, "entity_id": entity_id, "attempts": attempts}
        try:
            await self.client.lpush(self.name, json.dumps(job))
            return True
        except RedisError as e:
            logger.warning(f"Could not enqueue search job {job}: {e}")
            return False

    async def pop(self, timeout: int = 5) -> Optional[dict]:
        item = await self.client.brpop([self.name], timeout=timeout)
        if not item:
            return None
        _, raw = item
        return json.loads(raw)

    async def size(self) -> int:
        if self.client is None:
            return 0
        try:
            return await self.client.llen(self.name)
        except RedisError as e:
            logger.warning(f"Could not read search queue size: {e}")
            return 0

    async def clear(self) -> int:
        if self.client is None:
            return 0
        pending = await self.client.llen(self.name)
        await self.client.delete(self.name)
        return pending


def create_search_queue() -> SearchQueue:
    if not config.MEILISEARCH_HOST:
        logger.info("Search disabled: MEILISEARCH_HOST is not set")
        return SearchQueue(None)
    return SearchQueue(aioredis.from_url(config.REDIS_URL, decode_responses=True))
