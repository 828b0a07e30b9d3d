"""Per-phone mutual exclusion around the load → reduce → persist → dispatch cycle."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
import structlog

from restobot.config import settings

logger = structlog.get_logger()


class KeyedLock(ABC):
    @abstractmethod
    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        """Async context manager holding the lock for ``key``."""


class LocalKeyedLock(KeyedLock):
    """``asyncio.Lock`` per key; valid within one process."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


class RedisKeyedLock(KeyedLock):
    """Redis lock per key; serializes across worker processes."""

    def __init__(self, redis_client: redis.Redis, timeout: float = 60.0, blocking_timeout: Optional[float] = None):
        self.redis = redis_client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout if blocking_timeout is not None else timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"lock:conversation:{key}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        async with lock:
            yield


_lock: Optional[KeyedLock] = None


def get_keyed_lock(redis_client: Optional[redis.Redis] = None) -> KeyedLock:
    """Get or create the process-wide keyed lock for the configured backend."""
    global _lock
    if _lock is not None:
        return _lock
    if settings.lock_backend == "local" or redis_client is None:
        _lock = LocalKeyedLock()
    else:
        _lock = RedisKeyedLock(redis_client, timeout=settings.lock_timeout_seconds)
    logger.info("conversation_lock_initialized", backend=type(_lock).__name__)
    return _lock
