"""
Redis connection

Redis is optional. When `REDIS_HOST` is configured it backs the rate limiter
and the seen-charge ledger so several workers share counters; otherwise both
live in-process.
"""
from __future__ import annotations

from functools import lru_cache

from redis.asyncio import Redis

from payrelay.core.config import settings


def redis_enabled() -> bool:
    return bool(settings.REDIS_HOST)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    """
    Return the process-wide async Redis client.

    The client connects lazily, so calling this does not touch the network.

    Raises:
        RuntimeError: when Redis is not configured
    """
    if not settings.REDIS_HOST:
        raise RuntimeError("REDIS_HOST is not configured")
    return Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )
