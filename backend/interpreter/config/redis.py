"""
Shared Redis client for session presence keys.

The client is created on first use and closed on shutdown.
"""
import logging
from typing import Optional

import redis.asyncio as redis

from interpreter.config.settings import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def build_redis_url() -> str:
    auth = f":{settings.REDIS_PASSWORD}@" if settings.REDIS_PASSWORD else ""
    return f"redis://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(build_redis_url(), decode_responses=True)
        logger.info(f"[Redis] Client created for {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    return _client


async def close_redis():
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
