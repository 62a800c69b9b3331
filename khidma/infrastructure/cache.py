"""Short-lived JSON values in Redis (last known vehicle positions)."""

from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis


class JsonCache:
    def __init__(self, client: aioredis.Redis, prefix: str):
        self.redis = client
        self.prefix = prefix

    def _key(self, key: object) -> str:
        return f"{self.prefix}:{key}"

    async def set(self, key: object, value: Any, ttl_seconds: int) -> None:
        await self.redis.set(self._key(key), json.dumps(value), ex=ttl_seconds)

    async def get(self, key: object) -> Optional[Any]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(self, key: object) -> None:
        await self.redis.delete(self._key(key))
