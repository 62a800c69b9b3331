"""
Geographic math: great-circle distance, travel time, region containment,
unit conversion and H3 indexing helpers.

Assumption
----------
Distances are great-circle (Haversine) distances, not road distances.
Durations are derived from a per-vehicle-class average speed.  Both are
estimates; a routing-engine client could replace ``distance`` without
changing callers.

All functions are pure and safe to call concurrently.  Complexity: O(1)
per call except ``cells_within`` which is O(k²) in the ring count.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence, Union

import h3
from shapely.geometry import Point, Polygon

from .entities import Coordinate, DistanceResult
from .enums import TrafficCondition, VehicleType
from .errors import ValidationError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6_371.0
KM_PER_MILE = 1.609344
KM_PER_DEGREE_LAT = 111.0

DEFAULT_SPEED_KMH = 60.0  # medium truck (CAMION_10T)

VEHICLE_SPEEDS_KMH: dict[VehicleType, float] = {
    VehicleType.CAMION_3T: 70.0,
    VehicleType.CAMION_5T: 65.0,
    VehicleType.CAMION_10T: 60.0,
    VehicleType.CAMION_20T: 55.0,
    VehicleType.CAMION_35T: 50.0,
    VehicleType.REMORQUE: 45.0,
    VehicleType.SEMI_REMORQUE: 45.0,
    VehicleType.FOURGON: 75.0,
    VehicleType.BENNE: 60.0,
    VehicleType.CITERNE: 50.0,
}

TRAFFIC_FACTORS: dict[TrafficCondition, float] = {
    TrafficCondition.LOW: 1.0,
    TrafficCondition.MEDIUM: 1.2,
    TrafficCondition.HIGH: 1.5,
}


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round like a cashier does: 0.5 goes up, never to even."""
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ── Distance ──────────────────────────────────────────────────────────


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def speed_for(vehicle_type: Optional[VehicleType]) -> float:
    if vehicle_type is None:
        return DEFAULT_SPEED_KMH
    return VEHICLE_SPEEDS_KMH.get(VehicleType(vehicle_type), DEFAULT_SPEED_KMH)


def duration_minutes(
    distance_km: float, vehicle_type: Optional[VehicleType] = None
) -> int:
    return int(round_half_up(distance_km / speed_for(vehicle_type) * 60))


def distance(
    a: Coordinate, b: Coordinate, vehicle_type: Optional[VehicleType] = None
) -> DistanceResult:
    """Great-circle distance between *a* and *b* with an estimated duration."""
    km = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
    return DistanceResult(
        distance_km=km, duration_minutes=duration_minutes(km, vehicle_type)
    )


def travel_time_minutes(
    distance_km: float,
    vehicle_type: Optional[VehicleType] = None,
    traffic: TrafficCondition = TrafficCondition.MEDIUM,
) -> int:
    """Duration adjusted for traffic: the average speed is divided by the
    traffic factor (1.0 / 1.2 / 1.5)."""
    if not math.isfinite(distance_km) or distance_km < 0:
        raise ValidationError(
            "distance must be a finite, non-negative number",
            {"field": "distance_km"},
        )
    speed = speed_for(vehicle_type) / TRAFFIC_FACTORS[TrafficCondition(traffic)]
    return int(round_half_up(distance_km / speed * 60))


# ── Unit conversion ───────────────────────────────────────────────────


def km_to_miles(km: float) -> float:
    return km / KM_PER_MILE


def miles_to_km(miles: float) -> float:
    return miles * KM_PER_MILE


# ── Regions ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CircularRegion:
    center: Coordinate
    radius_km: float

    def contains(self, point: Coordinate) -> bool:
        return (
            haversine_km(
                self.center.latitude, self.center.longitude,
                point.latitude, point.longitude,
            )
            <= self.radius_km
        )


@dataclass(frozen=True)
class PolygonRegion:
    """Boundary given as (lat, lng) vertices.  Containment is planar in
    degree space, which is accurate enough for region-sized polygons away
    from the poles and the antimeridian."""

    vertices: tuple[Coordinate, ...]

    def __post_init__(self) -> None:
        if len(self.vertices) < 3:
            raise ValidationError(
                "a polygon region needs at least 3 vertices",
                {"field": "vertices", "count": len(self.vertices)},
            )

    @classmethod
    def from_bounds(
        cls, north: float, south: float, east: float, west: float
    ) -> "PolygonRegion":
        return cls(
            (
                Coordinate(south, west),
                Coordinate(south, east),
                Coordinate(north, east),
                Coordinate(north, west),
            )
        )

    def contains(self, point: Coordinate) -> bool:
        polygon = Polygon([(v.longitude, v.latitude) for v in self.vertices])
        # covers(): points on the boundary count as inside
        return polygon.covers(Point(point.longitude, point.latitude))


# Approximate administrative bounds
NAMED_REGIONS: dict[str, PolygonRegion] = {
    "Dakar": PolygonRegion.from_bounds(north=14.8, south=14.6, east=-17.3, west=-17.5),
    "Thiès": PolygonRegion.from_bounds(north=15.0, south=14.6, east=-16.7, west=-17.0),
    "Saint-Louis": PolygonRegion.from_bounds(north=16.2, south=15.8, east=-16.3, west=-16.6),
}

Region = Union[CircularRegion, PolygonRegion, str]


def point_in_region(point: Coordinate, region: Region) -> bool:
    """
    **Approximate** containment test.

    *region* is a ``CircularRegion`` (haversine radius), a
    ``PolygonRegion`` (planar lat/lng polygon) or the name of one of
    ``NAMED_REGIONS`` (coarse bounding boxes).  Unknown names contain
    nothing.
    """
    if isinstance(region, str):
        named = NAMED_REGIONS.get(region)
        if named is None:
            logger.debug("Unknown region %r", region)
            return False
        region = named
    return region.contains(point)


def bounding_box(
    center: Coordinate, radius_km: float
) -> tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) enclosing a radius around
    *center*.  1° latitude ≈ 111 km."""
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(center.latitude))
    if cos_lat < 1e-6:
        lng_delta = 180.0
    else:
        lng_delta = min(180.0, radius_km / (KM_PER_DEGREE_LAT * cos_lat))
    return (
        max(-90.0, center.latitude - lat_delta),
        min(90.0, center.latitude + lat_delta),
        center.longitude - lng_delta,
        center.longitude + lng_delta,
    )


# ── Spatial indexing (H3) ─────────────────────────────────────────────


def h3_cell(point: Coordinate, resolution: int) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(point.latitude, point.longitude, resolution)


def cells_within(
    center: Coordinate, radius_km: float, resolution: int
) -> list[str]:
    """
    Every H3 cell that may contain a point within *radius_km* of *center*.

    The ring count is deliberately generous: cell edges vary across the
    globe, so ring spacing is taken as half the average edge and two
    edges of slack cover the cell containing the center and the target.
    Callers must still filter candidates by exact distance.
    """
    edge = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil((radius_km + 2 * edge) / (0.75 * edge))
    return list(h3.grid_disk(h3_cell(center, resolution), k))


def nearest_first(
    center: Coordinate, points: Sequence[tuple[object, Coordinate]]
) -> list[tuple[object, float]]:
    """Pair each item with its distance to *center*, closest first
    (ties keep input order)."""
    scored = [
        (item, haversine_km(center.latitude, center.longitude, p.latitude, p.longitude))
        for item, p in points
    ]
    return sorted(scored, key=lambda pair: pair[1])
