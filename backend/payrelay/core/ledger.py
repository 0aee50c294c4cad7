"""
Seen-charge ledger

Payment processors redeliver webhooks. The ledger records which charge ids a
sink has already applied so a redelivery becomes a no-op for that sink.
Entries expire after a TTL; nothing here is durable beyond that.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class ChargeLedger(Protocol):
    async def claim(self, namespace: str, charge_id: str) -> bool:
        """Mark `charge_id` as applied for `namespace`; False if already claimed."""
        ...

    async def release(self, namespace: str, charge_id: str) -> None:
        """Forget a claim (the guarded work failed and may be redone)."""
        ...


class InMemoryChargeLedger:
    """
    Bounded TTL set of claimed (namespace, charge_id) pairs.

    Oldest claims are evicted first once `max_keys` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._claims: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    async def claim(self, namespace: str, charge_id: str) -> bool:
        key = f"{namespace}:{charge_id}"
        now = self._clock()
        with self._lock:
            self._expire(now)
            if key in self._claims:
                return False
            self._claims[key] = now + self.ttl_seconds
            while len(self._claims) > self.max_keys:
                self._claims.popitem(last=False)
            return True

    async def release(self, namespace: str, charge_id: str) -> None:
        with self._lock:
            self._claims.pop(f"{namespace}:{charge_id}", None)

    def _expire(self, now: float) -> None:
        # Insertion order equals expiry order since the TTL is constant.
        while self._claims:
            key, expires_at = next(iter(self._claims.items()))
            if expires_at > now:
                break
            del self._claims[key]


class RedisChargeLedger:
    """Claims stored as `SET NX EX` keys."""

    def __init__(self, redis: Redis, ttl_seconds: int, prefix: str = "charge-seen") -> None:
        self._redis = redis
        self.ttl_seconds = ttl_seconds
        self._prefix = prefix

    async def claim(self, namespace: str, charge_id: str) -> bool:
        key = f"{self._prefix}:{namespace}:{charge_id}"
        created = await self._redis.set(key, "1", ex=self.ttl_seconds, nx=True)
        return bool(created)

    async def release(self, namespace: str, charge_id: str) -> None:
        await self._redis.delete(f"{self._prefix}:{namespace}:{charge_id}")
