"""Shared plumbing for services that mutate an order."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.config import settings
from khidma.domain.entities import utcnow
from khidma.domain.enums import OrderAction, OrderStatus
from khidma.domain.errors import ConcurrentModification, NotFoundError
from khidma.domain.lifecycle import order_transition
from khidma.infrastructure.locks import DistributedLock
from khidma.infrastructure.models import TransportOrderModel
from khidma.infrastructure.redis_client import key
from khidma.infrastructure.repositories import OrderRepository

logger = logging.getLogger(__name__)


class OrderScopedService:
    """
    Every lifecycle mutation of an order runs inside ``order_unit``:

    1. take the per-order Redis lock (bounded wait)
    2. the caller re-reads and changes rows
    3. commit, or roll back on any error
    4. release the lock

    The commit happens before the release, so the next writer always
    reads committed state.
    """

    def __init__(
        self,
        session: AsyncSession,
        redis: aioredis.Redis,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.redis = redis
        self.clock = clock
        self.orders = OrderRepository(session)

    @asynccontextmanager
    async def order_unit(self, order_id: int) -> AsyncIterator[None]:
        lock = DistributedLock(
            self.redis,
            key("order", order_id),
            ttl_seconds=settings.order_lock_ttl_seconds,
            wait_seconds=settings.order_lock_wait_seconds,
        )
        if not await lock.acquire():
            raise ConcurrentModification(
                f"Order {order_id} is being modified by another request",
                {"order_id": order_id},
            )
        try:
            yield
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise
        finally:
            await lock.release()

    async def load_order(self, order_id: int) -> TransportOrderModel:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def lock_order(self, order_id: int) -> TransportOrderModel:
        order = await self.orders.get_for_update(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def conflict(self, entity: str, entity_id: int) -> ConcurrentModification:
        logger.warning("Compare-and-swap failed on %s %s", entity, entity_id)
        return ConcurrentModification(
            f"{entity.capitalize()} {entity_id} changed concurrently, retry",
            {entity: entity_id},
        )

    async def apply_order_action(
        self,
        order: TransportOrderModel,
        action: OrderAction,
        **values,
    ) -> OrderStatus:
        """Move *order* along ``ORDER_TRANSITIONS`` with a compare-and-swap
        write.  *values* are stored in the same statement."""
        current = OrderStatus(order.status)
        target = order_transition(current, action)
        if not await self.orders.compare_and_set(order, current, status=target, **values):
            raise self.conflict("order", order.id)
        logger.info(
            "Order %s: %s --%s--> %s",
            order.order_number, current.value, action.value, target.value,
        )
        return target
