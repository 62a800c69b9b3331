"""
Geolocation use cases: distances between stored addresses, route
planning with cost estimates, and the address radius search.

Radius search
-------------
1. Cover the circle with H3 cells (``cells_within``) and a latitude band.
2. Load active addresses indexed in those cells.
3. Keep those within the exact haversine radius, closest first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from khidma.config import settings
from khidma.domain.distance import (
    bounding_box,
    cells_within,
    distance,
    h3_cell,
    nearest_first,
)
from khidma.domain.entities import Coordinate, DistanceResult, RouteResult, TripCost
from khidma.domain.enums import VehicleType
from khidma.domain.errors import NotFoundError, ValidationError
from khidma.domain.pricing import CostParameters, TripCostEstimator
from khidma.domain.routing import optimize_route
from khidma.infrastructure.models import AddressModel
from khidma.infrastructure.repositories import AddressRepository


@dataclass(frozen=True)
class AddressHit:
    address: AddressModel
    distance_km: float


def cost_estimator() -> TripCostEstimator:
    return TripCostEstimator(CostParameters.from_settings(settings))


def estimate_trip(
    result: DistanceResult, vehicle_type: Optional[VehicleType] = None
) -> TripCost:
    return cost_estimator().estimate(
        result.distance_km, result.duration_minutes, vehicle_type
    )


def plan_route(
    waypoints: Sequence[Coordinate], vehicle_type: Optional[VehicleType] = None
) -> tuple[RouteResult, TripCost]:
    route = optimize_route(waypoints, vehicle_type, use_two_opt=settings.route_two_opt)
    cost = cost_estimator().estimate(
        route.total_distance_km, route.duration_minutes, vehicle_type
    )
    return route, cost


def address_coordinate(address: AddressModel) -> Coordinate:
    return Coordinate(address.latitude, address.longitude)


class GeolocationService:
    def __init__(self, session: AsyncSession):
        self.addresses = AddressRepository(session)

    async def _address(self, address_id: int) -> AddressModel:
        address = await self.addresses.get_active(address_id)
        if address is None:
            raise NotFoundError("Address", address_id)
        return address

    async def distance_between_addresses(
        self,
        from_address_id: int,
        to_address_id: int,
        vehicle_type: Optional[VehicleType] = None,
    ) -> tuple[DistanceResult, TripCost]:
        origin = await self._address(from_address_id)
        target = await self._address(to_address_id)
        result = distance(address_coordinate(origin), address_coordinate(target), vehicle_type)
        return result, estimate_trip(result, vehicle_type)

    async def search_radius(
        self,
        center: Coordinate,
        radius_km: float,
        limit: int = 20,
        user_id: Optional[int] = None,
    ) -> list[AddressHit]:
        if not 0 < radius_km <= settings.address_search_max_radius_km:
            raise ValidationError(
                f"radius_km must be in (0, {settings.address_search_max_radius_km:g}]",
                {"field": "radius_km", "value": radius_km},
            )
        if not 1 <= limit <= settings.address_search_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {settings.address_search_max_limit}",
                {"field": "limit", "value": limit},
            )
        cells = cells_within(center, radius_km, settings.address_h3_resolution)
        min_lat, max_lat, _, _ = bounding_box(center, radius_km)
        candidates = await self.addresses.candidates_in_cells(
            cells, min_lat, max_lat, user_id=user_id
        )
        scored = nearest_first(
            center, [(a, address_coordinate(a)) for a in candidates]
        )
        return [
            AddressHit(address, km) for address, km in scored if km <= radius_km
        ][:limit]

    async def add_address(
        self,
        user_id: int,
        label: str,
        city: str,
        position: Coordinate,
        street: Optional[str] = None,
        region: Optional[str] = None,
    ) -> AddressModel:
        """Store an address with its H3 index (used by seeding and tests)."""
        return await self.addresses.create(
            AddressModel(
                user_id=user_id,
                label=label,
                street=street,
                city=city,
                region=region,
                latitude=position.latitude,
                longitude=position.longitude,
                h3_cell=h3_cell(position, settings.address_h3_resolution),
            )
        )
