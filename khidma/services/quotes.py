"""
Quote use cases
===============

A carrier drafts a quote (BROUILLON), sends it (ENVOYE) and the shipper
accepts or rejects it.  Sending the first quote moves the order from
DEMANDE to DEVIS_ENVOYE; accepting one confirms the order.

Atomic acceptance
-----------------
Inside one locked unit of work:

1. the quote goes ENVOYE -> ACCEPTE (compare-and-swap)
2. every other open quote of the order goes to REFUSE
3. the order goes DEVIS_ENVOYE -> CONFIRME with the quote's price
   snapshot, carrier and vehicle
4. the vehicle is reserved

Any failed step rolls the whole unit back, so two concurrent accepts on
one order yield exactly one ACCEPTE.

Expiry
------
A sent quote is expired as soon as ``now >= valid_until``.  Reads and
accepts evaluate this lazily and persist EXPIRE when they see it; the
background sweep in ``khidma.workers.quote_expiry`` does the same in bulk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .base import OrderScopedService
from .identity import Actor
from khidma.config import settings
from khidma.domain.distance import haversine_km
from khidma.domain.entities import Page, PriceBreakdown
from khidma.domain.enums import (
    ORDER_QUOTABLE,
    OrderAction,
    OrderStatus,
    Priority,
    QuoteAction,
    QuoteStatus,
    VehicleStatus,
    compatible_vehicle_types,
)
from khidma.domain.errors import (
    AuthorizationError,
    DuplicateQuote,
    InvalidTransition,
    NoSuitableVehicle,
    NotFoundError,
    ValidationError,
)
from khidma.domain.lifecycle import (
    effective_quote_status,
    ensure_not_expired,
    ensure_valid_until_in_future,
    is_quote_expired,
    order_transition,
    quote_transition,
)
from khidma.domain.pricing import QuotePricingEngine, validate_breakdown
from khidma.infrastructure.models import QuoteModel, TransportOrderModel, VehicleModel
from khidma.infrastructure.repositories import QuoteRepository, VehicleRepository

logger = logging.getLogger(__name__)

BREAKDOWN_FIELDS = (
    "base_price", "distance_price", "weight_price", "volume_price",
    "fuel_surcharge", "toll_fees", "handling_fees", "insurance_fees",
    "other_fees", "subtotal", "taxes", "total_price",
)


@dataclass
class QuoteTerms:
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class QuoteDraft:
    order_id: int
    breakdown: PriceBreakdown
    valid_until: datetime
    vehicle_id: Optional[int] = None
    terms: QuoteTerms = field(default_factory=QuoteTerms)


def breakdown_values(breakdown: PriceBreakdown) -> dict[str, float]:
    return {name: getattr(breakdown, name) for name in BREAKDOWN_FIELDS}


def breakdown_of(quote: QuoteModel) -> PriceBreakdown:
    return PriceBreakdown(**{name: getattr(quote, name) for name in BREAKDOWN_FIELDS})


def _not_quotable(order: TransportOrderModel) -> InvalidTransition:
    return InvalidTransition(
        "order", order.status, OrderAction.SUBMIT_QUOTE, "order is not awaiting quotes"
    )


class QuoteService(OrderScopedService):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.quotes = QuoteRepository(self.session)
        self.vehicles = VehicleRepository(self.session)
        self.pricing = QuotePricingEngine.from_settings(settings)

    # ── Helpers ───────────────────────────────────────────────────────

    async def _load_quote(self, quote_id: int) -> QuoteModel:
        quote = await self.quotes.get_by_id(quote_id)
        if quote is None:
            raise NotFoundError("Quote", quote_id)
        return quote

    async def _lock_quote(self, quote_id: int) -> QuoteModel:
        quote = await self.quotes.get_for_update(quote_id)
        if quote is None:
            raise NotFoundError("Quote", quote_id)
        return quote

    def _ensure_quote_owner(self, actor: Actor, quote: QuoteModel) -> None:
        if actor.require_carrier() != quote.carrier_id:
            raise AuthorizationError("Not your quote", {"quote_id": quote.id})

    def _ensure_order_owner(self, actor: Actor, order: TransportOrderModel) -> None:
        if actor.require_shipper() != order.shipper_id:
            raise AuthorizationError("Not your order", {"order_id": order.id})

    async def _expire_if_due(self, quote: QuoteModel) -> QuoteModel:
        """Persist EXPIRE for a sent quote past its validity."""
        now = self.clock()
        if effective_quote_status(quote.status, quote.valid_until, now) != quote.status:
            quote_transition(quote.status, QuoteAction.EXPIRE)
            if await self.quotes.compare_and_set(
                quote, QuoteStatus.ENVOYE, status=QuoteStatus.EXPIRE
            ):
                logger.info("Quote %s expired", quote.quote_number)
            else:
                await self.session.refresh(quote)
        return quote

    async def _owned_vehicle(self, actor: Actor, vehicle_id: int) -> VehicleModel:
        vehicle = await self.vehicles.get_by_id(vehicle_id)
        if vehicle is None or vehicle.carrier_id != actor.carrier_id:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    async def _insert(
        self, actor: Actor, order: TransportOrderModel, draft: QuoteDraft,
        revised_from: Optional[QuoteModel] = None,
    ) -> QuoteModel:
        """Create a BROUILLON quote.  Caller holds the order lock."""
        carrier_id = actor.require_carrier()
        now = self.clock()
        if order.status not in ORDER_QUOTABLE:
            raise _not_quotable(order)
        for existing in await self.quotes.list_open(order.id, carrier_id):
            if existing.status == QuoteStatus.ENVOYE and is_quote_expired(existing.valid_until, now):
                await self._expire_if_due(existing)
                continue
            raise DuplicateQuote(
                "You already have an open quote on this order",
                {"quote_id": existing.id, "order_id": order.id},
            )
        quote = QuoteModel(
            quote_number=await self.quotes.next_number(now),
            order_id=order.id,
            carrier_id=carrier_id,
            vehicle_id=draft.vehicle_id,
            valid_until=draft.valid_until,
            payment_terms=draft.terms.payment_terms,
            delivery_terms=draft.terms.delivery_terms,
            conditions=draft.terms.conditions,
            notes=draft.terms.notes,
            status=QuoteStatus.BROUILLON,
            version=1,
            revised_from_id=revised_from.id if revised_from else None,
            created_at=now,
            updated_at=now,
            **breakdown_values(draft.breakdown),
        )
        await self.quotes.create(quote)
        return quote

    def _check_draft(self, draft: QuoteDraft) -> None:
        validate_breakdown(draft.breakdown)
        if draft.valid_until <= self.clock():
            raise ValidationError(
                "valid_until must be in the future", {"field": "valid_until"}
            )

    # ── Creation ──────────────────────────────────────────────────────

    async def create_quote(self, actor: Actor, draft: QuoteDraft) -> QuoteModel:
        actor.require_carrier()
        self._check_draft(draft)
        if draft.vehicle_id is not None:
            await self._owned_vehicle(actor, draft.vehicle_id)
        async with self.order_unit(draft.order_id):
            order = await self.lock_order(draft.order_id)
            quote = await self._insert(actor, order, draft)
        logger.info("Quote %s drafted on order %s", quote.quote_number, order.order_number)
        return quote

    async def match_vehicle(
        self, actor: Actor, order: TransportOrderModel, vehicle_id: Optional[int] = None
    ) -> VehicleModel:
        """Smallest adequate, compatible, available vehicle of the carrier."""
        carrier_id = actor.require_carrier()
        types = compatible_vehicle_types(order.goods_type)
        tons = order.weight_kg / 1000
        candidates = await self.vehicles.find_suitable(carrier_id, tons, types)
        if vehicle_id is not None:
            candidates = [v for v in candidates if v.id == vehicle_id]
        if not candidates:
            raise NoSuitableVehicle(
                f"No available vehicle can carry {tons:g}t of {order.goods_type.value}",
                {
                    "order_id": order.id,
                    "weight_kg": order.weight_kg,
                    "goods_type": order.goods_type.value,
                    "vehicle_id": vehicle_id,
                },
            )
        return candidates[0]

    async def generate_auto_quote(
        self,
        actor: Actor,
        order_id: int,
        vehicle_id: Optional[int] = None,
        terms: Optional[QuoteTerms] = None,
    ) -> QuoteModel:
        """Price the order for a matched vehicle and store it as a draft."""
        actor.require_carrier()
        order = await self.load_order(order_id)
        if order.status not in ORDER_QUOTABLE:
            raise _not_quotable(order)
        vehicle = await self.match_vehicle(actor, order, vehicle_id)

        distance_km = order.estimated_distance_km
        if distance_km is None:
            distance_km = haversine_km(
                order.departure_lat, order.departure_lng,
                order.destination_lat, order.destination_lng,
            )
        breakdown = self.pricing.price(
            vehicle_type=vehicle.vehicle_type,
            goods_type=order.goods_type,
            weight_kg=order.weight_kg,
            distance_km=distance_km,
            volume_m3=order.volume_m3,
            special_requirements=order.special_requirements or [],
            declared_value=order.declared_value,
            urgent=order.priority == Priority.URGENT,
            departure_date=order.departure_date.date(),
        )
        draft = QuoteDraft(
            order_id=order.id,
            breakdown=breakdown,
            valid_until=self.clock() + timedelta(days=settings.quote_validity_days),
            vehicle_id=vehicle.id,
            terms=terms or QuoteTerms(),
        )
        async with self.order_unit(order.id):
            order = await self.lock_order(order.id)
            quote = await self._insert(actor, order, draft)
        logger.info(
            "Auto quote %s for order %s with vehicle %s: %s",
            quote.quote_number, order.order_number, vehicle.plate_number, quote.total_price,
        )
        return quote

    # ── Draft edits ───────────────────────────────────────────────────

    async def update_quote(
        self,
        actor: Actor,
        quote_id: int,
        breakdown: Optional[PriceBreakdown] = None,
        valid_until: Optional[datetime] = None,
        vehicle_id: Optional[int] = None,
        terms: Optional[QuoteTerms] = None,
    ) -> QuoteModel:
        quote = await self._load_quote(quote_id)
        self._ensure_quote_owner(actor, quote)
        if quote.status != QuoteStatus.BROUILLON:
            raise InvalidTransition("quote", quote.status, "UPDATE", "only drafts can be edited")

        values: dict = {}
        if breakdown is not None:
            validate_breakdown(breakdown)
            values.update(breakdown_values(breakdown))
        if valid_until is not None:
            if valid_until <= self.clock():
                raise ValidationError("valid_until must be in the future", {"field": "valid_until"})
            values["valid_until"] = valid_until
        if vehicle_id is not None:
            await self._owned_vehicle(actor, vehicle_id)
            values["vehicle_id"] = vehicle_id
        if terms is not None:
            values.update(
                {k: v for k, v in vars(terms).items() if v is not None}
            )
        if values:
            if not await self.quotes.update_draft(quote, **values):
                raise self.conflict("quote", quote.id)
            await self.session.commit()
        return quote

    async def delete_quote(self, actor: Actor, quote_id: int) -> None:
        quote = await self._load_quote(quote_id)
        self._ensure_quote_owner(actor, quote)
        if quote.status != QuoteStatus.BROUILLON:
            raise InvalidTransition("quote", quote.status, "DELETE", "only drafts can be deleted")
        if not await self.quotes.delete_draft(quote):
            raise self.conflict("quote", quote.id)
        await self.session.commit()
        logger.info("Draft quote %s deleted", quote.quote_number)

    # ── Transitions ───────────────────────────────────────────────────

    async def send_quote(self, actor: Actor, quote_id: int) -> QuoteModel:
        quote = await self._load_quote(quote_id)
        self._ensure_quote_owner(actor, quote)
        async with self.order_unit(quote.order_id):
            quote = await self._lock_quote(quote_id)
            order = await self.lock_order(quote.order_id)
            target = quote_transition(quote.status, QuoteAction.SEND)
            if order.status not in ORDER_QUOTABLE:
                raise _not_quotable(order)
            now = self.clock()
            ensure_valid_until_in_future(quote.valid_until, now)

            if not await self.quotes.compare_and_set(
                quote, QuoteStatus.BROUILLON, status=target, sent_at=now
            ):
                raise self.conflict("quote", quote.id)
            if order.status == OrderStatus.DEMANDE:
                await self.apply_order_action(order, OrderAction.SUBMIT_QUOTE)
        logger.info("Quote %s sent on order %s", quote.quote_number, order.order_number)
        return quote

    async def accept_quote(self, actor: Actor, quote_id: int) -> tuple[QuoteModel, TransportOrderModel]:
        quote = await self._load_quote(quote_id)
        async with self.order_unit(quote.order_id):
            quote = await self._lock_quote(quote_id)
            order = await self.lock_order(quote.order_id)
            self._ensure_order_owner(actor, order)
            if quote.status == QuoteStatus.BROUILLON:
                raise NotFoundError("Quote", quote_id)

            now = self.clock()
            ensure_not_expired(quote.quote_number, quote.valid_until, now)
            target = quote_transition(quote.status, QuoteAction.ACCEPT)
            # nothing is written unless the order can take the quote
            order_transition(order.status, OrderAction.ACCEPT_QUOTE)

            if not await self.quotes.compare_and_set(
                quote, QuoteStatus.ENVOYE, status=target, responded_at=now
            ):
                raise self.conflict("quote", quote.id)
            superseded = await self.quotes.close_open(
                order.id, now, "Another quote was accepted", except_id=quote.id
            )
            breakdown = breakdown_of(quote)
            await self.apply_order_action(
                order,
                OrderAction.ACCEPT_QUOTE,
                carrier_id=quote.carrier_id,
                vehicle_id=quote.vehicle_id,
                assigned_at=now,
                base_price=breakdown.base_price,
                distance_price=breakdown.distance_price,
                weight_price=breakdown.weight_price,
                fees_price=breakdown.fees,
                tax_amount=breakdown.taxes,
                total_price=breakdown.total_price,
            )
            await self.vehicles.set_status(quote.vehicle_id, VehicleStatus.RESERVE)
        logger.info(
            "Quote %s accepted, order %s confirmed (%d sibling quote(s) closed)",
            quote.quote_number, order.order_number, superseded,
        )
        return quote, order

    async def reject_quote(
        self, actor: Actor, quote_id: int, reason: Optional[str] = None
    ) -> QuoteModel:
        quote = await self._load_quote(quote_id)
        async with self.order_unit(quote.order_id):
            quote = await self._lock_quote(quote_id)
            order = await self.lock_order(quote.order_id)
            self._ensure_order_owner(actor, order)
            if quote.status == QuoteStatus.BROUILLON:
                raise NotFoundError("Quote", quote_id)
            now = self.clock()
            shown = effective_quote_status(quote.status, quote.valid_until, now)
            target = quote_transition(shown, QuoteAction.REJECT)
            if not await self.quotes.compare_and_set(
                quote, QuoteStatus.ENVOYE,
                status=target, responded_at=now, rejection_reason=reason,
            ):
                raise self.conflict("quote", quote.id)
        logger.info("Quote %s rejected", quote.quote_number)
        return quote

    async def revise_quote(
        self,
        actor: Actor,
        quote_id: int,
        breakdown: PriceBreakdown,
        valid_until: datetime,
        vehicle_id: Optional[int] = None,
        terms: Optional[QuoteTerms] = None,
    ) -> QuoteModel:
        """Close a sent quote as MODIFIE and open a new draft in its place."""
        quote = await self._load_quote(quote_id)
        self._ensure_quote_owner(actor, quote)
        draft = QuoteDraft(
            order_id=quote.order_id,
            breakdown=breakdown,
            valid_until=valid_until,
            vehicle_id=vehicle_id if vehicle_id is not None else quote.vehicle_id,
            terms=terms or QuoteTerms(),
        )
        self._check_draft(draft)
        if vehicle_id is not None:
            await self._owned_vehicle(actor, vehicle_id)
        async with self.order_unit(quote.order_id):
            quote = await self._lock_quote(quote_id)
            order = await self.lock_order(quote.order_id)
            now = self.clock()
            shown = effective_quote_status(quote.status, quote.valid_until, now)
            target = quote_transition(shown, QuoteAction.REVISE)
            if order.status not in ORDER_QUOTABLE:
                raise _not_quotable(order)
            if not await self.quotes.compare_and_set(
                quote, QuoteStatus.ENVOYE, status=target, responded_at=now
            ):
                raise self.conflict("quote", quote.id)
            revised = await self._insert(actor, order, draft, revised_from=quote)
        logger.info("Quote %s revised as %s", quote.quote_number, revised.quote_number)
        return revised

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_quote(self, actor: Actor, quote_id: int) -> QuoteModel:
        quote = await self._load_quote(quote_id)
        order = await self.load_order(quote.order_id)
        own_quote = actor.carrier_id is not None and actor.carrier_id == quote.carrier_id
        own_order = (
            actor.shipper_id is not None
            and actor.shipper_id == order.shipper_id
            and quote.status != QuoteStatus.BROUILLON
        )
        if not (actor.is_admin or own_quote or own_order):
            raise NotFoundError("Quote", quote_id)
        return await self._expire_if_due(quote)

    async def list_order_quotes(self, actor: Actor, order_id: int) -> list[QuoteModel]:
        """Quotes the shipper can decide on, cheapest first."""
        order = await self.load_order(order_id)
        if not actor.is_admin:
            self._ensure_order_owner(actor, order)
        quotes = await self.quotes.list_for_order(order.id)
        return [await self._expire_if_due(q) for q in quotes]

    async def list_carrier_quotes(
        self,
        actor: Actor,
        statuses: Iterable[QuoteStatus] = (),
        order_id: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[QuoteModel]:
        carrier_id = actor.require_carrier()
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        result = await self.quotes.list_for_carrier(
            carrier_id, statuses, order_id, page, limit
        )
        result.items = [await self._expire_if_due(q) for q in result.items]
        return result

