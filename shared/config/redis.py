import redis.asyncio as redis
from typing import Optional
import json
import logging

logger = logging.getLogger(__name__)


async def init_redis(redis_url: Optional[str]) -> Optional[redis.Redis]:
    """Open a Redis connection, or return None when Redis is not configured"""
    if not redis_url:
        logger.info("Redis not configured, outcome events stay in the database only")
        return None

    client = redis.from_url(redis_url, decode_responses=True)

    # Test connection
    try:
        await client.ping()
        logger.info("Redis connected")
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}")
        await client.aclose()
        return None
    return client


class RedisPublisher:
    """Publishes JSON payloads to a Redis pub/sub channel"""

    def __init__(self, client: Optional[redis.Redis], channel: str):
        self.redis = client
        self.channel = channel

    async def publish(self, payload: dict) -> bool:
        if not self.redis:
            return False

        await self.redis.publish(self.channel, json.dumps(payload, default=str))
        return True

    async def close(self):
        if self.redis:
            await self.redis.aclose()
