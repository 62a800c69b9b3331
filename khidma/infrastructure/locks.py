"""
Redis-based distributed lock.

Used per order so that every lifecycle mutation of one order runs as a
single writer across API instances, and by the quote-expiry worker so
only one instance runs a sweep at a time.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.  Blocking acquisition polls with a
bounded wait; it never waits indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(Exception):
    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock: {key}")
        self.key = key


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        wait_seconds: float = 0.0,
        poll_interval: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait = wait_seconds
        self.poll_interval = poll_interval
        self.token = str(uuid.uuid4())

    async def try_acquire(self) -> bool:
        """Single attempt. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire(self) -> bool:
        """Retry until acquired or ``wait_seconds`` have elapsed."""
        deadline = time.monotonic() + self.wait
        while True:
            if await self.try_acquire():
                return True
            if time.monotonic() >= deadline:
                logger.warning("Lock %s still held after %.2fs", self.key, self.wait)
                return False
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(RELEASE_SCRIPT, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *args):
        await self.release()
