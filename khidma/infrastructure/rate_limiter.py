"""
Fixed-window rate limiter on Redis.

One MULTI/EXEC round-trip per check:

    INCR   key             -> count in the current window
    EXPIRE key window NX   -> only the first hit of a window sets the TTL
    PTTL   key             -> time left, used for ``reset_at``

The increment and the expiry travel in one transaction.
The counter keeps counting past the limit so abuse magnitude is visible.
If Redis fails or times out the check **fails open**: the request is
allowed and a warning is logged.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from khidma.domain.entities import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    count: int
    remaining: int
    reset_at: datetime
    blocked: bool
    degraded: bool = False


class RateLimiter:
    def __init__(
        self,
        client: aioredis.Redis,
        prefix: str = "ratelimit",
        timeout_seconds: Optional[float] = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.redis = client
        self.prefix = prefix
        self.timeout = timeout_seconds
        self.clock = clock

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        pipe = self.redis.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.pttl(key)
        count, _, pttl = await pipe.execute()
        return int(count), int(pttl)

    async def check(
        self, key: str, limit: int, window_seconds: int
    ) -> RateLimitResult:
        now = self.clock()
        try:
            count, pttl = await asyncio.wait_for(
                self._hit(self._key(key), window_seconds), timeout=self.timeout
            )
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Rate limiter unavailable for %s, allowing request: %s", key, exc
            )
            return RateLimitResult(
                count=0,
                remaining=limit,
                reset_at=now + timedelta(seconds=window_seconds),
                blocked=False,
                degraded=True,
            )

        # -1/-2: no TTL visible (key raced with expiry); assume a full window
        ttl_ms = pttl if pttl > 0 else window_seconds * 1000
        ttl_ms = min(ttl_ms, window_seconds * 1000)
        blocked = count > limit
        if blocked:
            logger.info("Rate limit exceeded for %s: %d/%d", key, count, limit)
        return RateLimitResult(
            count=count,
            remaining=max(0, limit - count),
            reset_at=now + timedelta(milliseconds=ttl_ms),
            blocked=blocked,
        )

    @staticmethod
    def retry_after_seconds(result: RateLimitResult, now: datetime) -> int:
        return max(1, math.ceil((result.reset_at - now).total_seconds()))
