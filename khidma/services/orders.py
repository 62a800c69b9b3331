"""
Order use cases
===============

Creation, reads and the carrier/admin driven transitions of a transport
order.  Quote-driven transitions (SUBMIT_QUOTE, ACCEPT_QUOTE) live in
``quotes``.

Every transition is checked against ``ORDER_TRANSITIONS`` first, then
against its guard (who may act, what must be present), then written with
compare-and-swap inside the order's lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from .base import OrderScopedService
from .identity import Actor
from khidma.config import settings
from khidma.domain.distance import distance, round_half_up
from khidma.domain.entities import Coordinate, Page
from khidma.domain.enums import (
    ORDER_OPEN,
    ORDER_QUOTABLE,
    GoodsType,
    OrderAction,
    OrderStatus,
    Priority,
    UserRole,
    VehicleStatus,
)
from khidma.domain.errors import (
    AuthorizationError,
    ConcurrentModification,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from khidma.domain.lifecycle import ensure_cancellation_reason, order_transition
from khidma.domain.pricing import QuotePricingEngine
from khidma.infrastructure.models import TransportOrderModel
from khidma.infrastructure.repositories import (
    AddressRepository,
    OrderFilters,
    QuoteRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)

SORT_FIELDS = {"date", "price", "status"}
SEARCH_SORT_FIELDS = {"date", "price", "distance", "departure"}


@dataclass
class OrderDraft:
    departure_address_id: int
    destination_address_id: int
    departure_date: datetime
    goods_type: GoodsType
    goods_description: str
    weight_kg: float
    volume_m3: Optional[float] = None
    quantity: Optional[int] = None
    declared_value: Optional[float] = None
    special_requirements: list[str] = field(default_factory=list)
    priority: Priority = Priority.NORMAL
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None


def is_participant(actor: Actor, order: TransportOrderModel) -> bool:
    if actor.shipper_id is not None and actor.shipper_id == order.shipper_id:
        return True
    return actor.carrier_id is not None and actor.carrier_id == order.carrier_id


def ensure_assigned_carrier(actor: Actor, order: TransportOrderModel) -> None:
    if actor.carrier_id is None or actor.carrier_id != order.carrier_id:
        raise AuthorizationError(
            "Only the carrier assigned to this order may do this",
            {"order_id": order.id},
        )


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1", {"field": "page"})
    if not 1 <= limit <= 100:
        raise ValidationError("limit must be between 1 and 100", {"field": "limit"})


def _check_sort(sort_by: str, sort_order: str, allowed: set[str]) -> None:
    if sort_by not in allowed:
        raise ValidationError(
            f"sort_by must be one of {sorted(allowed)}", {"field": "sort_by"}
        )
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", {"field": "sort_order"})


class OrderService(OrderScopedService):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.addresses = AddressRepository(self.session)
        self.vehicles = VehicleRepository(self.session)
        self.quotes = QuoteRepository(self.session)
        self.pricing = QuotePricingEngine.from_settings(settings)

    # ── Creation ──────────────────────────────────────────────────────

    async def _owned_address(self, actor: Actor, address_id: int):
        address = await self.addresses.get_active(address_id)
        if address is None or address.user_id != actor.user_id:
            raise NotFoundError("Address", address_id)
        return address

    async def create_order(self, actor: Actor, draft: OrderDraft) -> TransportOrderModel:
        shipper_id = actor.require_shipper()
        if draft.departure_address_id == draft.destination_address_id:
            raise ValidationError(
                "Departure and destination must differ",
                {"field": "destination_address_id"},
            )
        if draft.weight_kg <= 0:
            raise ValidationError("weight_kg must be positive", {"field": "weight_kg"})
        departure = await self._owned_address(actor, draft.departure_address_id)
        destination = await self._owned_address(actor, draft.destination_address_id)

        route = distance(
            Coordinate(departure.latitude, departure.longitude),
            Coordinate(destination.latitude, destination.longitude),
        )
        now = self.clock()
        order = TransportOrderModel(
            order_number=await self.orders.next_number(now),
            shipper_id=shipper_id,
            departure_address_id=departure.id,
            destination_address_id=destination.id,
            departure_lat=departure.latitude,
            departure_lng=departure.longitude,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            departure_date=draft.departure_date,
            delivery_date=draft.delivery_date,
            goods_type=draft.goods_type,
            goods_description=draft.goods_description,
            weight_kg=draft.weight_kg,
            volume_m3=draft.volume_m3,
            quantity=draft.quantity,
            declared_value=draft.declared_value,
            special_requirements=list(draft.special_requirements),
            priority=draft.priority,
            notes=draft.notes,
            estimated_distance_km=round_half_up(route.distance_km, 2),
            estimated_duration_minutes=route.duration_minutes,
            estimated_price=self.pricing.indicative_price(
                draft.weight_kg, route.distance_km, draft.goods_type
            ),
            status=OrderStatus.DEMANDE,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.orders.create(order)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConcurrentModification(
                "Order number already taken, retry", {"order_number": order.order_number}
            ) from None
        logger.info("Order %s created by shipper %s", order.order_number, shipper_id)
        return order

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_order(self, actor: Actor, order_id: int) -> TransportOrderModel:
        order = await self.load_order(order_id)
        visible = (
            actor.is_admin
            or is_participant(actor, order)
            or (actor.carrier_id is not None and order.status in ORDER_QUOTABLE)
        )
        if not visible:
            raise AuthorizationError("Not allowed to view this order", {"order_id": order_id})
        return order

    async def list_orders(
        self,
        actor: Actor,
        statuses: Optional[list[OrderStatus]] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> Page[TransportOrderModel]:
        """Orders the actor takes part in: shippers see their requests,
        carriers the orders assigned to them, admins everything."""
        _check_page(page, limit)
        _check_sort(sort_by, sort_order, SORT_FIELDS)
        filters = OrderFilters(statuses=list(statuses or []))
        if actor.role == UserRole.EXPEDITEUR:
            filters.shipper_id = actor.require_shipper()
        elif actor.role == UserRole.TRANSPORTEUR:
            filters.carrier_id = actor.require_carrier()
        return await self.orders.list_page(filters, page, limit, sort_by, sort_order)

    async def search_orders(
        self,
        filters: OrderFilters,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> Page[TransportOrderModel]:
        """Marketplace search over orders still open for quotes."""
        _check_page(page, limit)
        _check_sort(sort_by, sort_order, SEARCH_SORT_FIELDS)
        requested = set(filters.statuses) if filters.statuses else set(ORDER_OPEN)
        filters.statuses = sorted(requested & ORDER_OPEN, key=lambda s: s.value)
        filters.shipper_id = filters.carrier_id = None
        if not filters.statuses:
            return Page([], page, limit, 0)
        return await self.orders.list_page(filters, page, limit, sort_by, sort_order)

    # ── Transitions ───────────────────────────────────────────────────

    async def start_order(self, actor: Actor, order_id: int) -> TransportOrderModel:
        async with self.order_unit(order_id):
            order = await self.lock_order(order_id)
            order_transition(order.status, OrderAction.START)
            ensure_assigned_carrier(actor, order)
            if order.vehicle_id is None:
                raise InvalidTransition(
                    "order", order.status, OrderAction.START, "no vehicle assigned"
                )
            now = self.clock()
            await self.apply_order_action(order, OrderAction.START, started_at=now)
            await self.vehicles.set_status(order.vehicle_id, VehicleStatus.EN_COURS)
        return order

    async def complete_order(
        self,
        actor: Actor,
        order_id: int,
        delivery_proof: Optional[list[str]] = None,
        signature: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransportOrderModel:
        async with self.order_unit(order_id):
            order = await self.lock_order(order_id)
            order_transition(order.status, OrderAction.DELIVER)
            ensure_assigned_carrier(actor, order)
            now = self.clock()
            await self.apply_order_action(
                order,
                OrderAction.DELIVER,
                delivered_at=now,
                completed_at=now,
                delivery_proof=list(delivery_proof) if delivery_proof else None,
                signature=signature,
                delivery_notes=notes,
            )
            await self.vehicles.set_status(order.vehicle_id, VehicleStatus.DISPONIBLE)
        return order

    async def finalize_order(self, actor: Actor, order_id: int) -> TransportOrderModel:
        actor.require_admin()
        async with self.order_unit(order_id):
            order = await self.lock_order(order_id)
            order_transition(order.status, OrderAction.FINALIZE)
            if not order.delivery_proof and not order.signature:
                raise InvalidTransition(
                    "order", order.status, OrderAction.FINALIZE,
                    "no delivery proof or signature recorded",
                )
            await self.apply_order_action(order, OrderAction.FINALIZE)
        return order

    async def cancel_order(
        self, actor: Actor, order_id: int, reason: Optional[str]
    ) -> TransportOrderModel:
        reason = ensure_cancellation_reason(reason)
        async with self.order_unit(order_id):
            order = await self.lock_order(order_id)
            order_transition(order.status, OrderAction.CANCEL)
            if not is_participant(actor, order):
                raise AuthorizationError(
                    "Only the shipper or the assigned carrier may cancel",
                    {"order_id": order_id},
                )
            now = self.clock()
            await self.apply_order_action(
                order,
                OrderAction.CANCEL,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            closed = await self.quotes.close_open(order.id, now, "Order cancelled")
            if closed:
                logger.info("Closed %d open quote(s) of cancelled order %s", closed, order.order_number)
            await self.vehicles.set_status(order.vehicle_id, VehicleStatus.DISPONIBLE)
        return order

    async def assign_vehicle(
        self, actor: Actor, order_id: int, vehicle_id: int
    ) -> TransportOrderModel:
        """Attach a vehicle to a confirmed order accepted without one."""
        async with self.order_unit(order_id):
            order = await self.lock_order(order_id)
            ensure_assigned_carrier(actor, order)
            if order.status != OrderStatus.CONFIRME or order.vehicle_id is not None:
                raise InvalidTransition(
                    "order", order.status, "ASSIGN_VEHICLE",
                    "only a confirmed order without a vehicle can be assigned one",
                )
            vehicle = await self.vehicles.get_by_id(vehicle_id)
            if (
                vehicle is None
                or vehicle.carrier_id != actor.carrier_id
                or not vehicle.is_active
                or vehicle.status != VehicleStatus.DISPONIBLE
            ):
                raise NotFoundError("Available vehicle", vehicle_id)
            if order.weight_kg > vehicle.capacity_tons * 1000:
                raise ValidationError(
                    f"Insufficient capacity: vehicle {vehicle.capacity_tons}t, "
                    f"order {order.weight_kg / 1000}t",
                    {"field": "vehicle_id"},
                )
            if not await self.orders.compare_and_set(
                order, OrderStatus.CONFIRME, vehicle_id=vehicle.id
            ):
                raise self.conflict("order", order.id)
            await self.vehicles.set_status(vehicle.id, VehicleStatus.RESERVE)
            logger.info("Vehicle %s assigned to order %s", vehicle.plate_number, order.order_number)
        return order
