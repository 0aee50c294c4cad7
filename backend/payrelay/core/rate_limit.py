"""
Per-origin request rate limiting

Sliding window limiter behind a small capability interface (`admit(key)`), so
routes never touch a process-wide map directly. Two backends:

- InMemoryRateLimiter: single process, pruned opportunistically on use
- RedisRateLimiter: sorted set per key, shared between workers

Key format (Redis): "rate:{key}", members are "{timestamp}:{nonce}" scored by
timestamp.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimiter(Protocol):
    async def admit(self, key: str) -> bool:
        """Record one request for `key`; False when the window is full."""
        ...


class InMemoryRateLimiter:
    """
    Sliding window counter held in process memory.

    Each key keeps a deque of request timestamps inside the window. Expired
    timestamps for the requesting key are dropped on every call, and every
    `sweep_every` calls all keys are scanned so idle origins do not pile up.
    Updates for a key happen under one lock, so simultaneous requests cannot
    lose increments.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Clock = time.monotonic,
        sweep_every: int = 100,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sweep_every = sweep_every
        self._calls = 0
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    async def admit(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(cutoff)

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def _sweep(self, cutoff: float) -> None:
        stale = [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for k in stale:
            del self._hits[k]
        if stale:
            logger.debug("Rate limiter pruned %d idle keys", len(stale))

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)


class RedisRateLimiter:
    """Sliding window counter stored in a Redis sorted set per key."""

    def __init__(
        self,
        redis: Redis,
        max_requests: int,
        window_seconds: float,
        clock: Clock = time.time,
        prefix: str = "rate",
    ) -> None:
        self._redis = redis
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._prefix = prefix

    async def admit(self, key: str) -> bool:
        now = self._clock()
        redis_key = f"{self._prefix}:{key}"
        member = f"{now}:{uuid4().hex}"

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
            pipe.zadd(redis_key, {member: now})
            pipe.zcard(redis_key)
            pipe.expire(redis_key, int(self.window_seconds) + 1)
            _, _, count, _ = await pipe.execute()

        if count > self.max_requests:
            # Rejected requests do not occupy a slot.
            await self._redis.zrem(redis_key, member)
            return False
        return True
