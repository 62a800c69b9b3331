"""
Background Quote Expiry Worker
==============================

Runs every ``QUOTE_EXPIRY_INTERVAL_SECONDS`` (default 300 s).

Reads already treat a sent quote past ``valid_until`` as EXPIRE; this
sweep persists that status in bulk so listings and reports filtering on
the stored column agree with what readers see.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the sweep at
  a time across multiple API processes.
* The bulk update is conditioned on ``status = ENVOYE``, so a quote
  accepted or rejected concurrently is never overwritten.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from khidma.config import settings
from khidma.domain.entities import utcnow
from khidma.infrastructure.database import async_session_factory
from khidma.infrastructure.locks import DistributedLock
from khidma.infrastructure.redis_client import get_redis, key
from khidma.infrastructure.repositories import QuoteRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Quote expiry worker started (interval=%ds)",
        settings.quote_expiry_interval_seconds,
    )


async def stop_expiry_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Quote expiry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_sweep()
        except Exception:
            logger.exception("Unhandled error in quote expiry sweep")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.quote_expiry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next sweep


async def expire_quotes(session, redis, now: Optional[datetime] = None) -> Optional[int]:
    """Persist EXPIRE on every sent quote past its validity in *session*.

    Returns the number of quotes expired, or None when another instance
    holds the sweep lock.
    """
    lock = DistributedLock(redis, key("quote_expiry"), ttl_seconds=60)
    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return None

    try:
        expired = await QuoteRepository(session).expire_due(now or utcnow())
        await session.commit()
    finally:
        await lock.release()

    if expired:
        logger.info("Expired %d quote(s)", expired)
    return expired


async def run_expiry_sweep(
    redis=None, session_factory=None, now: Optional[datetime] = None
) -> int:
    redis = redis or await get_redis()
    session_factory = session_factory or async_session_factory
    async with session_factory() as session:
        expired = await expire_quotes(session, redis, now)
    return expired or 0
