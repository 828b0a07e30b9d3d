"""Shared redis.asyncio connection for conversations, menus and locks."""

from typing import Optional

import redis.asyncio as redis

from restobot.config import settings

_redis: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _redis
    if _redis is None:
        # str responses: conversation documents and menus are JSON text
        _redis = redis.from_url(settings.redis_url, decode_responses=True, health_check_interval=30)
    return _redis


async def get_redis() -> redis.Redis:
    """FastAPI dependency."""
    return get_redis_client()


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
