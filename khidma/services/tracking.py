"""Last known vehicle position of an order in transit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from .identity import Actor
from .orders import ensure_assigned_carrier, is_participant
from khidma.config import settings
from khidma.domain.distance import duration_minutes, haversine_km, round_half_up
from khidma.domain.entities import Coordinate, utcnow
from khidma.domain.enums import OrderStatus
from khidma.domain.errors import AuthorizationError, InvalidTransition, NotFoundError
from khidma.infrastructure.cache import JsonCache
from khidma.infrastructure.repositories import OrderRepository, VehicleRepository

logger = logging.getLogger(__name__)

TRACKABLE = frozenset({OrderStatus.EN_TRANSIT})


@dataclass(frozen=True)
class PositionReport:
    order_id: int
    latitude: float
    longitude: float
    speed_kmh: Optional[float]
    heading: Optional[float]
    recorded_at: datetime
    remaining_distance_km: float
    eta_minutes: int

    def to_cache(self) -> dict:
        return {
            "order_id": self.order_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed_kmh": self.speed_kmh,
            "heading": self.heading,
            "recorded_at": self.recorded_at.isoformat(),
            "remaining_distance_km": self.remaining_distance_km,
            "eta_minutes": self.eta_minutes,
        }

    @classmethod
    def from_cache(cls, data: dict) -> "PositionReport":
        return cls(**{**data, "recorded_at": datetime.fromisoformat(data["recorded_at"])})


class TrackingService:
    def __init__(
        self,
        session: AsyncSession,
        redis: aioredis.Redis,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orders = OrderRepository(session)
        self.vehicles = VehicleRepository(session)
        self.positions = JsonCache(redis, f"{settings.redis_key_prefix}:position")
        self.clock = clock

    async def update_position(
        self,
        actor: Actor,
        order_id: int,
        position: Coordinate,
        speed_kmh: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> PositionReport:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        ensure_assigned_carrier(actor, order)
        if order.status not in TRACKABLE:
            raise InvalidTransition(
                "order", order.status, "UPDATE_POSITION", "order is not in transit"
            )

        remaining = haversine_km(
            position.latitude, position.longitude,
            order.destination_lat, order.destination_lng,
        )
        if speed_kmh and speed_kmh > 0:
            eta = int(round_half_up(remaining / speed_kmh * 60))
        else:
            vehicle = await self.vehicles.get_by_id(order.vehicle_id) if order.vehicle_id else None
            eta = duration_minutes(remaining, vehicle.vehicle_type if vehicle else None)

        report = PositionReport(
            order_id=order.id,
            latitude=position.latitude,
            longitude=position.longitude,
            speed_kmh=speed_kmh,
            heading=heading,
            recorded_at=self.clock(),
            remaining_distance_km=round_half_up(remaining, 2),
            eta_minutes=eta,
        )
        await self.positions.set(order.id, report.to_cache(), settings.position_ttl_seconds)
        logger.debug("Position of order %s: %s km to go", order.order_number, report.remaining_distance_km)
        return report

    async def get_position(self, actor: Actor, order_id: int) -> PositionReport:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if not (actor.is_admin or is_participant(actor, order)):
            raise AuthorizationError("Not allowed to track this order", {"order_id": order_id})
        data = await self.positions.get(order.id)
        if data is None:
            raise NotFoundError("Position for order", order_id)
        return PositionReport.from_cache(data)
