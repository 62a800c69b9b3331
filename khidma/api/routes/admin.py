"""
Admin / observability endpoints
===============================

POST /api/v1/admin/quotes/expire -- run the quote expiry sweep now
GET  /api/v1/admin/health        -- simple health check
"""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.api.dependencies import get_actor, get_db
from khidma.api.middleware import limiter
from khidma.api.schemas import Envelope, ExpirySweepResponse, HealthResponse
from khidma.infrastructure.redis_client import get_redis
from khidma.services.identity import Actor
from khidma.workers.quote_expiry import expire_quotes

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/quotes/expire",
    response_model=Envelope[ExpirySweepResponse],
    summary="Expire every sent quote past its validity",
)
@limiter.limit("10/minute")
async def expire_due_quotes(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    actor.require_admin()
    expired = await expire_quotes(db, redis)
    return Envelope[ExpirySweepResponse](
        data=ExpirySweepResponse(expired=expired or 0, skipped=expired is None)
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
