"""FastAPI dependency injection helpers."""

from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.config import settings
from khidma.domain.errors import AuthorizationError, RateLimited
from khidma.infrastructure.database import async_session_factory
from khidma.infrastructure.rate_limiter import RateLimiter
from khidma.infrastructure.redis_client import get_redis
from khidma.services.geolocation import GeolocationService
from khidma.services.identity import Actor, IdentityResolver
from khidma.services.orders import OrderService
from khidma.services.quotes import QuoteService
from khidma.services.tracking import TrackingService


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """The caller, as authenticated by the gateway in front of the API."""
    if x_user_id is None:
        raise AuthorizationError("Missing X-User-Id header")
    return await IdentityResolver(db).resolve(x_user_id)


# ── Services ──────────────────────────────────────────────────────────


async def get_order_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> OrderService:
    return OrderService(db, redis)


async def get_quote_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> QuoteService:
    return QuoteService(db, redis)


async def get_tracking_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> TrackingService:
    return TrackingService(db, redis)


async def get_geolocation_service(
    db: AsyncSession = Depends(get_db),
) -> GeolocationService:
    return GeolocationService(db)


# ── Rate limiting of lifecycle mutations ──────────────────────────────

ACTION_LIMITS = {
    "order": lambda: settings.rate_limit_order_mutations,
    "quote": lambda: settings.rate_limit_quote_mutations,
    "tracking": lambda: settings.rate_limit_tracking,
}


def rate_limit(action: str):
    """Dependency factory: count the call against (actor, action class) and
    reject it with ``RateLimited`` once the window's budget is spent."""
    limit_for = ACTION_LIMITS[action]

    async def guard(
        actor: Actor = Depends(get_actor),
        redis: aioredis.Redis = Depends(get_redis),
    ) -> Actor:
        limiter = RateLimiter(
            redis,
            prefix=f"{settings.redis_key_prefix}:ratelimit",
            timeout_seconds=settings.redis_socket_timeout_seconds,
        )
        limit = limit_for()
        result = await limiter.check(
            f"{actor.user_id}:{action}", limit, settings.rate_limit_window_seconds
        )
        if result.blocked:
            raise RateLimited(
                f"Too many {action} requests, retry later",
                {
                    "limit": limit,
                    "count": result.count,
                    "reset_at": result.reset_at.isoformat(),
                    "retry_after": RateLimiter.retry_after_seconds(
                        result, limiter.clock()
                    ),
                },
            )
        return actor

    return guard
