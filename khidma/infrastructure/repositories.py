"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Status changes on orders and quotes go
through ``compare_and_set`` so a write based on a stale read affects no
rows instead of overwriting a concurrent change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AddressModel,
    CarrierModel,
    QuoteModel,
    ShipperModel,
    TransportOrderModel,
    UserModel,
    VehicleModel,
)
from khidma.domain.entities import Page
from khidma.domain.enums import (
    QUOTE_ACTIVE,
    QUOTE_EXPIRABLE,
    QUOTE_SUPERSEDABLE,
    QUOTE_TRANSITIONS,
    GoodsType,
    OrderStatus,
    QuoteAction,
    QuoteStatus,
    VehicleStatus,
    VehicleType,
)


async def _next_number(
    session: AsyncSession, column, prefix: str
) -> str:
    """``<prefix><sequence>``, sequence zero-padded to 4 digits."""
    # longest first, then lexicographic: numeric max even past 9999
    result = await session.execute(
        select(column)
        .where(column.like(f"{prefix}%"))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:04d}"


def _paginate(query, page: int, limit: int):
    return query.offset((page - 1) * limit).limit(limit)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_shipper_by_user(self, user_id: int) -> Optional[ShipperModel]:
        result = await self.session.execute(
            select(ShipperModel).where(ShipperModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_carrier_by_user(self, user_id: int) -> Optional[CarrierModel]:
        result = await self.session.execute(
            select(CarrierModel).where(CarrierModel.user_id == user_id)
        )
        return result.scalar_one_or_none()


class AddressRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, address: AddressModel) -> AddressModel:
        self.session.add(address)
        await self.session.flush()
        return address

    async def get_by_id(self, address_id: int) -> Optional[AddressModel]:
        return await self.session.get(AddressModel, address_id)

    async def get_active(self, address_id: int) -> Optional[AddressModel]:
        result = await self.session.execute(
            select(AddressModel).where(
                AddressModel.id == address_id, AddressModel.is_active.is_(True)
            )
        )
        return result.scalar_one_or_none()

    async def candidates_in_cells(
        self,
        cells: Iterable[str],
        min_lat: float,
        max_lat: float,
        user_id: Optional[int] = None,
    ) -> list[AddressModel]:
        """Active addresses in any of *cells*, narrowed by latitude band.

        Longitude is left to the caller's exact distance check so the
        antimeridian needs no special case.
        """
        query = select(AddressModel).where(
            AddressModel.is_active.is_(True),
            AddressModel.h3_cell.in_(list(cells)),
            AddressModel.latitude.between(min_lat, max_lat),
        )
        if user_id is not None:
            query = query.where(AddressModel.user_id == user_id)
        result = await self.session.execute(query.order_by(AddressModel.id))
        return list(result.scalars().all())


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)

    async def find_suitable(
        self,
        carrier_id: int,
        min_capacity_tons: float,
        vehicle_types: Iterable[VehicleType],
    ) -> list[VehicleModel]:
        """Smallest adequate capacity first, then cheapest, then id."""
        result = await self.session.execute(
            select(VehicleModel)
            .where(
                VehicleModel.carrier_id == carrier_id,
                VehicleModel.is_active.is_(True),
                VehicleModel.status == VehicleStatus.DISPONIBLE,
                VehicleModel.capacity_tons >= min_capacity_tons,
                VehicleModel.vehicle_type.in_(list(vehicle_types)),
            )
            .order_by(
                VehicleModel.capacity_tons,
                func.coalesce(VehicleModel.daily_rate, 0),
                VehicleModel.id,
            )
        )
        return list(result.scalars().all())

    async def set_status(self, vehicle_id: Optional[int], status: VehicleStatus) -> None:
        if vehicle_id is None:
            return
        await self.session.execute(
            update(VehicleModel)
            .where(VehicleModel.id == vehicle_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )


@dataclass
class OrderFilters:
    shipper_id: Optional[int] = None
    carrier_id: Optional[int] = None
    statuses: list[OrderStatus] = field(default_factory=list)
    goods_type: Optional[GoodsType] = None
    min_weight_kg: Optional[float] = None
    max_weight_kg: Optional[float] = None
    departure_from: Optional[datetime] = None
    departure_to: Optional[datetime] = None
    max_distance_km: Optional[float] = None


class OrderRepository:
    SORT_COLUMNS = {
        "date": TransportOrderModel.created_at,
        "price": func.coalesce(
            TransportOrderModel.total_price, TransportOrderModel.estimated_price
        ),
        "status": TransportOrderModel.status,
        "distance": TransportOrderModel.estimated_distance_km,
        "departure": TransportOrderModel.departure_date,
    }

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, order: TransportOrderModel) -> TransportOrderModel:
        self.session.add(order)
        await self.session.flush()
        return order

    async def next_number(self, now: datetime) -> str:
        return await _next_number(
            self.session,
            TransportOrderModel.order_number,
            f"TR{now:%y%m%d}",
        )

    async def get_by_id(self, order_id: int) -> Optional[TransportOrderModel]:
        return await self.session.get(TransportOrderModel, order_id)

    async def get_for_update(self, order_id: int) -> Optional[TransportOrderModel]:
        """SELECT ... FOR UPDATE, bypassing the identity map so the row is
        current even if this session read it before the lock was taken."""
        result = await self.session.execute(
            select(TransportOrderModel)
            .where(TransportOrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def compare_and_set(
        self,
        order: TransportOrderModel,
        expected_status: OrderStatus,
        **values: Any,
    ) -> bool:
        """Apply *values* only if the row still has the status and version
        held by *order*.  Returns False when another writer got there first."""
        result = await self.session.execute(
            update(TransportOrderModel)
            .where(
                TransportOrderModel.id == order.id,
                TransportOrderModel.status == expected_status,
                TransportOrderModel.version == order.version,
            )
            .values(version=TransportOrderModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self.session.refresh(order)
        return True

    def _filtered(self, filters: OrderFilters):
        query = select(TransportOrderModel)
        if filters.shipper_id is not None:
            query = query.where(TransportOrderModel.shipper_id == filters.shipper_id)
        if filters.carrier_id is not None:
            query = query.where(TransportOrderModel.carrier_id == filters.carrier_id)
        if filters.statuses:
            query = query.where(TransportOrderModel.status.in_(filters.statuses))
        if filters.goods_type is not None:
            query = query.where(TransportOrderModel.goods_type == filters.goods_type)
        if filters.min_weight_kg is not None:
            query = query.where(TransportOrderModel.weight_kg >= filters.min_weight_kg)
        if filters.max_weight_kg is not None:
            query = query.where(TransportOrderModel.weight_kg <= filters.max_weight_kg)
        if filters.departure_from is not None:
            query = query.where(
                TransportOrderModel.departure_date >= filters.departure_from
            )
        if filters.departure_to is not None:
            query = query.where(TransportOrderModel.departure_date <= filters.departure_to)
        if filters.max_distance_km is not None:
            query = query.where(
                TransportOrderModel.estimated_distance_km <= filters.max_distance_km
            )
        return query

    async def list_page(
        self,
        filters: OrderFilters,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> Page[TransportOrderModel]:
        query = self._filtered(filters)
        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        )

        column = self.SORT_COLUMNS[sort_by]
        descending = sort_order == "desc"
        # id breaks ties so equal sort keys never reorder between pages
        ordering = (
            (column.desc(), TransportOrderModel.id.desc())
            if descending
            else (column.asc(), TransportOrderModel.id.asc())
        )
        result = await self.session.execute(
            _paginate(query.order_by(*ordering), page, limit)
        )
        return Page(list(result.scalars().all()), page, limit, total or 0)


class QuoteRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, quote: QuoteModel) -> QuoteModel:
        self.session.add(quote)
        await self.session.flush()
        return quote

    async def next_number(self, now: datetime) -> str:
        return await _next_number(
            self.session, QuoteModel.quote_number, f"DV{now:%y%m%d}"
        )

    async def get_by_id(self, quote_id: int) -> Optional[QuoteModel]:
        return await self.session.get(QuoteModel, quote_id)

    async def get_for_update(self, quote_id: int) -> Optional[QuoteModel]:
        result = await self.session.execute(
            select(QuoteModel)
            .where(QuoteModel.id == quote_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_open(self, order_id: int, carrier_id: int) -> list[QuoteModel]:
        """The carrier's BROUILLON / ENVOYE quotes on the order."""
        result = await self.session.execute(
            select(QuoteModel)
            .where(
                QuoteModel.order_id == order_id,
                QuoteModel.carrier_id == carrier_id,
                QuoteModel.status.in_(list(QUOTE_ACTIVE)),
            )
            .order_by(QuoteModel.id)
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self, quote: QuoteModel, expected_status: QuoteStatus, **values: Any
    ) -> bool:
        result = await self.session.execute(
            update(QuoteModel)
            .where(
                QuoteModel.id == quote.id,
                QuoteModel.status == expected_status,
                QuoteModel.version == quote.version,
            )
            .values(version=QuoteModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self.session.refresh(quote)
        return True

    async def update_draft(self, quote: QuoteModel, **values: Any) -> bool:
        return await self.compare_and_set(quote, QuoteStatus.BROUILLON, **values)

    async def delete_draft(self, quote: QuoteModel) -> bool:
        result = await self.session.execute(
            delete(QuoteModel)
            .where(
                QuoteModel.id == quote.id,
                QuoteModel.status == QuoteStatus.BROUILLON,
                QuoteModel.version == quote.version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.expunge(quote)
        return True

    async def close_open(
        self,
        order_id: int,
        now: datetime,
        reason: str,
        except_id: Optional[int] = None,
    ) -> int:
        """Supersede every open quote of the order.  Returns the count.

        Sent quotes already past their validity are expired first, so they
        keep EXPIRE instead of being refused.
        """
        scope = [QuoteModel.order_id == order_id]
        if except_id is not None:
            scope.append(QuoteModel.id != except_id)
        await self.expire_due(now, *scope)

        targets: dict[QuoteStatus, list[QuoteStatus]] = {}
        for status in QUOTE_SUPERSEDABLE:
            target = QUOTE_TRANSITIONS[(status, QuoteAction.SUPERSEDE)]
            targets.setdefault(target, []).append(status)

        closed = 0
        for target, sources in targets.items():
            result = await self.session.execute(
                update(QuoteModel)
                .where(*scope, QuoteModel.status.in_(sources))
                .values(
                    status=target,
                    version=QuoteModel.version + 1,
                    responded_at=now,
                    rejection_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            closed += result.rowcount
        return closed

    async def expire_due(self, now: datetime, *criteria: Any) -> int:
        result = await self.session.execute(
            update(QuoteModel)
            .where(
                *criteria,
                QuoteModel.status.in_(list(QUOTE_EXPIRABLE)),
                QuoteModel.valid_until <= now,
            )
            .values(status=QuoteStatus.EXPIRE, version=QuoteModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_for_order(
        self, order_id: int, include_drafts: bool = False
    ) -> list[QuoteModel]:
        query = select(QuoteModel).where(QuoteModel.order_id == order_id)
        if not include_drafts:
            query = query.where(QuoteModel.status != QuoteStatus.BROUILLON)
        result = await self.session.execute(
            query.order_by(QuoteModel.total_price, QuoteModel.id)
        )
        return list(result.scalars().all())

    async def list_for_carrier(
        self,
        carrier_id: int,
        statuses: Iterable[QuoteStatus] = (),
        order_id: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[QuoteModel]:
        query = select(QuoteModel).where(QuoteModel.carrier_id == carrier_id)
        statuses = list(statuses)
        if statuses:
            query = query.where(QuoteModel.status.in_(statuses))
        if order_id is not None:
            query = query.where(QuoteModel.order_id == order_id)
        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        )
        result = await self.session.execute(
            _paginate(
                query.order_by(QuoteModel.created_at.desc(), QuoteModel.id.desc()),
                page,
                limit,
            )
        )
        return Page(list(result.scalars().all()), page, limit, total or 0)

