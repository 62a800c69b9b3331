"""Redis async connection pool."""

import redis.asyncio as aioredis

from khidma.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url,
    decode_responses=True,
    socket_timeout=settings.redis_socket_timeout_seconds,
    socket_connect_timeout=settings.redis_socket_timeout_seconds,
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


def key(*parts: object) -> str:
    """Namespaced key, e.g. ``khidma:ratelimit:42:quote``."""
    return ":".join([settings.redis_key_prefix, *(str(p) for p in parts)])
