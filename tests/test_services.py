"""
Service-level tests against a real (SQLite) database and the Redis double.

Covers the full Dakar -> Thiès order lifecycle, quote rules, tracking,
the address radius search and the quote expiry sweep.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from khidma.domain.entities import Coordinate
from khidma.domain.enums import (
    ORDER_TRANSITIONS,
    GoodsType,
    OrderStatus,
    QuoteStatus,
    VehicleStatus,
)
from khidma.domain.errors import (
    AuthorizationError,
    DuplicateQuote,
    ExpiredError,
    InvalidTransition,
    NoSuitableVehicle,
    NotFoundError,
    ProfileRequired,
    ValidationError,
)
from khidma.infrastructure.locks import DistributedLock
from khidma.infrastructure.models import QuoteModel, VehicleModel
from khidma.infrastructure.redis_client import key
from khidma.infrastructure.repositories import OrderFilters
from khidma.services.geolocation import GeolocationService
from khidma.services.orders import OrderService
from khidma.services.quotes import QuoteService
from khidma.services.tracking import TRACKABLE, TrackingService
from khidma.workers.quote_expiry import run_expiry_sweep
from tests.conftest import BREAKDOWN, DAKAR, THIES, order_draft, quote_draft


@pytest.fixture
def orders(db_session, redis, clock):
    return OrderService(db_session, redis, clock=clock)


@pytest.fixture
def quotes(db_session, redis, clock):
    return QuoteService(db_session, redis, clock=clock)


async def _sent_quote(orders, quotes, world, clock, carrier_index=0, **draft):
    order = await orders.create_order(world.shipper, order_draft(world, clock, **draft))
    carrier = world.carriers[carrier_index]
    quote = await quotes.create_quote(
        carrier, quote_draft(order.id, clock, world.vehicle_ids[carrier_index])
    )
    await quotes.send_quote(carrier, quote.id)
    return order.id, quote.id


class TestOrderLifecycle:
    @pytest.mark.asyncio
    async def test_dakar_to_thies_end_to_end(self, orders, quotes, db_session, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        assert order.status == OrderStatus.DEMANDE
        assert order.order_number == "TR2603020001"
        assert 55 < order.estimated_distance_km < 58
        assert order.estimated_price > 0
        assert order.total_price is None

        carrier = world.carriers[0]
        quote = await quotes.create_quote(
            carrier, quote_draft(order.id, clock, world.vehicle_ids[0])
        )
        assert quote.status == QuoteStatus.BROUILLON
        assert quote.quote_number == "DV2603020001"

        sent = await quotes.send_quote(carrier, quote.id)
        assert sent.status == QuoteStatus.ENVOYE
        assert sent.sent_at == clock.now
        assert (await orders.get_order(world.shipper, order.id)).status == OrderStatus.DEVIS_ENVOYE

        clock.advance(hours=3)
        accepted, confirmed = await quotes.accept_quote(world.shipper, quote.id)
        assert accepted.status == QuoteStatus.ACCEPTE
        assert confirmed.status == OrderStatus.CONFIRME
        assert confirmed.carrier_id == carrier.carrier_id
        assert confirmed.vehicle_id == world.vehicle_ids[0]
        assert confirmed.base_price == 45_000
        assert confirmed.fees_price == 15_000
        assert confirmed.tax_amount == 46_800
        assert confirmed.total_price == 306_800
        assert confirmed.assigned_at == clock.now

        vehicle = await db_session.get(VehicleModel, world.vehicle_ids[0])
        await db_session.refresh(vehicle)
        assert vehicle.status == VehicleStatus.RESERVE

        started = await orders.start_order(carrier, order.id)
        assert started.status == OrderStatus.EN_TRANSIT
        assert started.started_at == clock.now

        clock.advance(hours=2)
        delivered = await orders.complete_order(
            carrier, order.id, delivery_proof=["bl-0001.jpg"], signature="M. Diop"
        )
        assert delivered.status == OrderStatus.LIVRE
        assert delivered.delivered_at == delivered.completed_at == clock.now

        await db_session.refresh(vehicle)
        assert vehicle.status == VehicleStatus.DISPONIBLE

        finished = await orders.finalize_order(world.admin, order.id)
        assert finished.status == OrderStatus.TERMINE
        assert finished.version == 6

    @pytest.mark.asyncio
    async def test_order_numbers_increment(self, orders, world, clock):
        first = await orders.create_order(world.shipper, order_draft(world, clock))
        second = await orders.create_order(world.shipper, order_draft(world, clock))
        assert (first.order_number, second.order_number) == ("TR2603020001", "TR2603020002")

    @pytest.mark.asyncio
    async def test_same_departure_and_destination(self, orders, world, clock):
        with pytest.raises(ValidationError):
            await orders.create_order(
                world.shipper,
                order_draft(world, clock, destination_address_id=world.dakar_id),
            )

    @pytest.mark.asyncio
    async def test_carrier_cannot_create_order(self, orders, world, clock):
        with pytest.raises(ProfileRequired):
            await orders.create_order(world.carriers[0], order_draft(world, clock))

    @pytest.mark.asyncio
    async def test_foreign_address_is_not_found(self, orders, db_session, world, clock):
        foreign = await GeolocationService(db_session).add_address(
            world.carriers[0].user_id, "Garage", "Rufisque", Coordinate(14.716, -17.27)
        )
        foreign_id = foreign.id
        await db_session.commit()
        with pytest.raises(NotFoundError):
            await orders.create_order(
                world.shipper, order_draft(world, clock, destination_address_id=foreign_id)
            )

    @pytest.mark.asyncio
    async def test_start_requires_assigned_carrier(self, orders, quotes, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        await quotes.accept_quote(world.shipper, quote_id)
        with pytest.raises(AuthorizationError):
            await orders.start_order(world.carriers[1], order_id)

    @pytest.mark.asyncio
    async def test_start_without_vehicle_then_assign(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        order_id = order.id
        carrier = world.carriers[0]
        quote = await quotes.create_quote(carrier, quote_draft(order_id, clock))
        await quotes.send_quote(carrier, quote.id)
        await quotes.accept_quote(world.shipper, quote.id)

        with pytest.raises(InvalidTransition):
            await orders.start_order(carrier, order_id)

        assigned = await orders.assign_vehicle(carrier, order_id, world.vehicle_ids[0])
        assert assigned.vehicle_id == world.vehicle_ids[0]
        assert (await orders.start_order(carrier, order_id)).status == OrderStatus.EN_TRANSIT

    @pytest.mark.asyncio
    async def test_complete_before_start_is_invalid(self, orders, quotes, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        await quotes.accept_quote(world.shipper, quote_id)
        with pytest.raises(InvalidTransition):
            await orders.complete_order(world.carriers[0], order_id, signature="x")

    @pytest.mark.asyncio
    async def test_finalize_rules(self, orders, quotes, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        carrier = world.carriers[0]
        await quotes.accept_quote(world.shipper, quote_id)
        await orders.start_order(carrier, order_id)
        await orders.complete_order(carrier, order_id)

        with pytest.raises(AuthorizationError):
            await orders.finalize_order(world.shipper, order_id)
        with pytest.raises(InvalidTransition, match="no delivery proof"):
            await orders.finalize_order(world.admin, order_id)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_closes_open_quotes(self, orders, quotes, db_session, world, clock):
        order_id, sent_id = await _sent_quote(orders, quotes, world, clock)
        draft = await quotes.create_quote(world.carriers[1], quote_draft(order_id, clock))
        draft_id = draft.id

        cancelled = await orders.cancel_order(world.shipper, order_id, "Client a annulé la commande")
        assert cancelled.status == OrderStatus.ANNULE
        assert cancelled.cancelled_at == clock.now
        assert cancelled.cancellation_reason == "Client a annulé la commande"

        for quote_id in (sent_id, draft_id):
            quote = await db_session.get(QuoteModel, quote_id)
            await db_session.refresh(quote)
            assert quote.status == QuoteStatus.REFUSE
            assert quote.rejection_reason == "Order cancelled"

    @pytest.mark.asyncio
    async def test_short_reason_rejected(self, orders, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(ValidationError):
            await orders.cancel_order(world.shipper, order.id, "non")

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, orders, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(AuthorizationError):
            await orders.cancel_order(world.carriers[0], order.id, "Je ne veux pas de cette commande")

    @pytest.mark.asyncio
    async def test_cancelled_order_is_final(self, orders, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        order_id = order.id
        await orders.cancel_order(world.shipper, order_id, "Marchandise plus disponible")
        with pytest.raises(InvalidTransition):
            await orders.cancel_order(world.shipper, order_id, "Marchandise plus disponible")


class TestQuotes:
    @pytest.mark.asyncio
    async def test_duplicate_open_quote(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        order_id = order.id
        await quotes.create_quote(world.carriers[0], quote_draft(order_id, clock))
        with pytest.raises(DuplicateQuote):
            await quotes.create_quote(world.carriers[0], quote_draft(order_id, clock))

    @pytest.mark.asyncio
    async def test_inconsistent_breakdown_rejected(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(ValidationError):
            await quotes.create_quote(
                world.carriers[0],
                quote_draft(order.id, clock, breakdown=replace(BREAKDOWN, total_price=1)),
            )

    @pytest.mark.asyncio
    async def test_valid_until_in_past_rejected(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(ValidationError):
            await quotes.create_quote(
                world.carriers[0],
                quote_draft(order.id, clock, valid_until=clock.now - timedelta(hours=1)),
            )

    @pytest.mark.asyncio
    async def test_someone_elses_vehicle_is_not_found(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(NotFoundError):
            await quotes.create_quote(
                world.carriers[0], quote_draft(order.id, clock, world.vehicle_ids[1])
            )

    @pytest.mark.asyncio
    async def test_shipper_cannot_see_drafts(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        draft = await quotes.create_quote(world.carriers[0], quote_draft(order.id, clock))
        with pytest.raises(NotFoundError):
            await quotes.get_quote(world.shipper, draft.id)
        assert await quotes.list_order_quotes(world.shipper, order.id) == []

    @pytest.mark.asyncio
    async def test_accept_expired_quote(self, orders, quotes, world, clock):
        _, quote_id = await _sent_quote(orders, quotes, world, clock)
        clock.advance(days=8)
        with pytest.raises(ExpiredError):
            await quotes.accept_quote(world.shipper, quote_id)

        # reads persist the expiry
        quote = await quotes.get_quote(world.shipper, quote_id)
        assert quote.status == QuoteStatus.EXPIRE

    @pytest.mark.asyncio
    async def test_reject_keeps_order_open(self, orders, quotes, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        rejected = await quotes.reject_quote(world.shipper, quote_id, "Trop cher")
        assert rejected.status == QuoteStatus.REFUSE
        assert rejected.rejection_reason == "Trop cher"
        order = await orders.get_order(world.shipper, order_id)
        assert order.status == OrderStatus.DEVIS_ENVOYE

        # the carrier may quote again once the first is closed
        again = await quotes.create_quote(world.carriers[0], quote_draft(order_id, clock))
        assert again.status == QuoteStatus.BROUILLON

    @pytest.mark.asyncio
    async def test_revise_sent_quote(self, orders, quotes, db_session, world, clock):
        _, quote_id = await _sent_quote(orders, quotes, world, clock)
        cheaper = replace(
            BREAKDOWN, distance_price=140_000, subtotal=250_000, taxes=45_000, total_price=295_000
        )
        revised = await quotes.revise_quote(
            world.carriers[0], quote_id, cheaper, clock.now + timedelta(days=5)
        )
        assert revised.status == QuoteStatus.BROUILLON
        assert revised.revised_from_id == quote_id
        assert revised.total_price == 295_000
        assert revised.vehicle_id == world.vehicle_ids[0]

        original = await db_session.get(QuoteModel, quote_id)
        assert original.status == QuoteStatus.MODIFIE

    @pytest.mark.asyncio
    async def test_update_and_delete_draft(self, orders, quotes, db_session, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        carrier = world.carriers[0]
        draft = await quotes.create_quote(carrier, quote_draft(order.id, clock))
        draft_id = draft.id

        updated = await quotes.update_quote(
            carrier, draft_id, vehicle_id=world.vehicle_ids[0]
        )
        assert updated.vehicle_id == world.vehicle_ids[0]

        await quotes.delete_quote(carrier, draft_id)
        assert await db_session.get(QuoteModel, draft_id) is None

    @pytest.mark.asyncio
    async def test_sent_quote_cannot_be_edited(self, orders, quotes, world, clock):
        _, quote_id = await _sent_quote(orders, quotes, world, clock)
        with pytest.raises(InvalidTransition):
            await quotes.delete_quote(world.carriers[0], quote_id)

    @pytest.mark.asyncio
    async def test_order_quotes_cheapest_first(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        order_id = order.id
        cheaper = replace(
            BREAKDOWN, distance_price=140_000, subtotal=250_000, taxes=45_000, total_price=295_000
        )
        for carrier, breakdown in zip(world.carriers, (BREAKDOWN, cheaper)):
            quote = await quotes.create_quote(
                carrier, quote_draft(order_id, clock, breakdown=breakdown)
            )
            await quotes.send_quote(carrier, quote.id)

        listed = await quotes.list_order_quotes(world.shipper, order_id)
        assert [q.total_price for q in listed] == [295_000, 306_800]

    @pytest.mark.asyncio
    async def test_accept_expires_stale_siblings_and_refuses_the_rest(
        self, orders, quotes, db_session, world, clock
    ):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        order_id = order.id
        first, second, third = world.carriers

        chosen = await quotes.create_quote(first, quote_draft(order_id, clock))
        chosen_id = chosen.id
        await quotes.send_quote(first, chosen_id)
        short = await quotes.create_quote(
            second, quote_draft(order_id, clock, valid_until=clock.now + timedelta(hours=1))
        )
        short_id = short.id
        await quotes.send_quote(second, short_id)
        draft = await quotes.create_quote(third, quote_draft(order_id, clock))
        draft_id = draft.id

        clock.advance(hours=2)
        await quotes.accept_quote(world.shipper, chosen_id)

        stale = await db_session.get(QuoteModel, short_id)
        await db_session.refresh(stale)
        assert stale.status == QuoteStatus.EXPIRE
        assert stale.rejection_reason is None

        superseded = await db_session.get(QuoteModel, draft_id)
        await db_session.refresh(superseded)
        assert superseded.status == QuoteStatus.REFUSE
        assert superseded.rejection_reason == "Another quote was accepted"


class TestAutoQuote:
    @pytest.mark.asyncio
    async def test_prices_matched_vehicle(self, orders, quotes, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        quote = await quotes.generate_auto_quote(world.carriers[0], order.id)

        assert quote.status == QuoteStatus.BROUILLON
        assert quote.vehicle_id == world.vehicle_ids[0]
        assert quote.base_price == 49_500
        assert quote.weight_price == 47_500
        assert quote.total_price == quote.subtotal + quote.taxes
        assert quote.valid_until == clock.now + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_too_heavy_for_fleet(self, orders, quotes, world, clock):
        order = await orders.create_order(
            world.shipper, order_draft(world, clock, weight_kg=12_000)
        )
        with pytest.raises(NoSuitableVehicle):
            await quotes.generate_auto_quote(world.carriers[0], order.id)

    @pytest.mark.asyncio
    async def test_liquids_need_a_tanker(self, orders, quotes, world, clock):
        order = await orders.create_order(
            world.shipper, order_draft(world, clock, goods_type=GoodsType.LIQUIDES)
        )
        with pytest.raises(NoSuitableVehicle) as exc:
            await quotes.generate_auto_quote(world.carriers[0], order.id)
        assert exc.value.details["goods_type"] == "LIQUIDES"


class TestListing:
    @pytest.mark.asyncio
    async def test_pagination_is_stable_on_ties(self, orders, world, clock):
        ids = [
            (await orders.create_order(world.shipper, order_draft(world, clock))).id
            for _ in range(3)
        ]
        # same created_at everywhere: id breaks the tie
        first = await orders.list_orders(world.shipper, page=1, limit=2)
        second = await orders.list_orders(world.shipper, page=2, limit=2)
        assert [o.id for o in first.items] == [ids[2], ids[1]]
        assert [o.id for o in second.items] == [ids[0]]
        assert first.meta() == {
            "page": 1, "limit": 2, "total": 3, "total_pages": 2,
            "has_next": True, "has_prev": False,
        }

    @pytest.mark.asyncio
    async def test_ascending_order(self, orders, world, clock):
        ids = []
        for _ in range(3):
            ids.append((await orders.create_order(world.shipper, order_draft(world, clock))).id)
            clock.advance(minutes=1)
        page = await orders.list_orders(world.shipper, sort_order="asc")
        assert [o.id for o in page.items] == ids

    @pytest.mark.asyncio
    async def test_invalid_sort(self, orders, world):
        with pytest.raises(ValidationError):
            await orders.list_orders(world.shipper, sort_by="weight")

    @pytest.mark.asyncio
    async def test_carrier_sees_assigned_orders_only(self, orders, quotes, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        await orders.create_order(world.shipper, order_draft(world, clock))
        await quotes.accept_quote(world.shipper, quote_id)

        mine = await orders.list_orders(world.carriers[0])
        assert [o.id for o in mine.items] == [order_id]
        assert (await orders.list_orders(world.carriers[1])).total == 0

    @pytest.mark.asyncio
    async def test_search_only_open_orders(self, orders, world, clock):
        open_order = await orders.create_order(world.shipper, order_draft(world, clock))
        open_id = open_order.id
        heavy = await orders.create_order(
            world.shipper, order_draft(world, clock, weight_kg=30_000)
        )
        cancelled = await orders.create_order(world.shipper, order_draft(world, clock))
        await orders.cancel_order(world.shipper, cancelled.id, "Commande saisie en double")

        result = await orders.search_orders(OrderFilters(max_weight_kg=20_000))
        assert [o.id for o in result.items] == [open_id]

        none = await orders.search_orders(OrderFilters(statuses=[OrderStatus.ANNULE]))
        assert none.total == 0
        assert heavy.id not in [o.id for o in result.items]


class TestTracking:
    def test_trackable_statuses_are_reachable(self):
        assert TRACKABLE <= set(ORDER_TRANSITIONS.values())

    @pytest.mark.asyncio
    async def test_position_while_in_transit(self, orders, quotes, db_session, redis, world, clock):
        order_id, quote_id = await _sent_quote(orders, quotes, world, clock)
        carrier = world.carriers[0]
        tracking = TrackingService(db_session, redis, clock=clock)

        await quotes.accept_quote(world.shipper, quote_id)
        with pytest.raises(InvalidTransition):
            await tracking.update_position(carrier, order_id, DAKAR)

        await orders.start_order(carrier, order_id)
        midway = Coordinate(14.74, -17.19)
        report = await tracking.update_position(carrier, order_id, midway, speed_kmh=60)
        assert 0 < report.remaining_distance_km < 57
        assert report.eta_minutes == round(report.remaining_distance_km)

        seen = await tracking.get_position(world.shipper, order_id)
        assert (seen.latitude, seen.longitude) == midway.as_tuple()
        assert seen.recorded_at == clock.now

        with pytest.raises(AuthorizationError):
            await tracking.update_position(world.carriers[1], order_id, THIES)
        with pytest.raises(AuthorizationError):
            await tracking.get_position(world.carriers[1], order_id)

    @pytest.mark.asyncio
    async def test_no_position_yet(self, orders, db_session, redis, world, clock):
        order = await orders.create_order(world.shipper, order_draft(world, clock))
        with pytest.raises(NotFoundError):
            await TrackingService(db_session, redis, clock=clock).get_position(
                world.shipper, order.id
            )


class TestRadiusSearch:
    @pytest.mark.asyncio
    async def test_closest_first(self, db_session, world):
        service = GeolocationService(db_session)
        near = await service.search_radius(DAKAR, 10)
        assert [h.address.id for h in near] == [world.dakar_id]

        both = await service.search_radius(DAKAR, 100)
        assert [h.address.id for h in both] == [world.dakar_id, world.thies_id]
        assert both[1].distance_km == pytest.approx(56.8, abs=1.5)

    @pytest.mark.asyncio
    async def test_limit_and_owner_filter(self, db_session, world):
        service = GeolocationService(db_session)
        assert len(await service.search_radius(THIES, 100, limit=1)) == 1
        assert await service.search_radius(THIES, 100, user_id=world.admin.user_id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("radius, limit", [(0, 10), (201, 10), (10, 0), (10, 101)])
    async def test_bounds(self, db_session, world, radius, limit):
        with pytest.raises(ValidationError):
            await GeolocationService(db_session).search_radius(DAKAR, radius, limit)

    @pytest.mark.asyncio
    async def test_distance_between_addresses(self, db_session, world):
        result, cost = await GeolocationService(db_session).distance_between_addresses(
            world.dakar_id, world.thies_id
        )
        assert 55 < result.distance_km < 58
        assert cost.total == cost.fuel + cost.toll + cost.driver


class TestExpirySweep:
    @pytest.mark.asyncio
    async def test_sweep_persists_expiry(
        self, orders, quotes, db_session, session_factory, redis, world, clock
    ):
        _, quote_id = await _sent_quote(orders, quotes, world, clock)
        other_order = await orders.create_order(world.shipper, order_draft(world, clock))
        fresh = await quotes.create_quote(
            world.carriers[1], quote_draft(other_order.id, clock, valid_until=clock.now + timedelta(days=30))
        )
        fresh_id = fresh.id
        await quotes.send_quote(world.carriers[1], fresh_id)

        later = clock.now + timedelta(days=8)
        expired = await run_expiry_sweep(redis=redis, session_factory=session_factory, now=later)
        assert expired == 1

        async with session_factory() as session:
            assert (await session.get(QuoteModel, quote_id)).status == QuoteStatus.EXPIRE
            assert (await session.get(QuoteModel, fresh_id)).status == QuoteStatus.ENVOYE

        assert await run_expiry_sweep(redis=redis, session_factory=session_factory, now=later) == 0

    @pytest.mark.asyncio
    async def test_sweep_skips_when_locked(self, session_factory, redis):
        holder = DistributedLock(redis, key("quote_expiry"))
        assert await holder.acquire()
        assert await run_expiry_sweep(redis=redis, session_factory=session_factory) == 0
        await holder.release()

