"""
Domain value objects.

These are immutable, I/O-free types passed between the geo, routing and
pricing modules and the services.  ``Coordinate`` validates itself on
construction so out-of-domain input is rejected before any computation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from .errors import ValidationError

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name, value, bound in (
            ("latitude", self.latitude, 90.0),
            ("longitude", self.longitude, 180.0),
        ):
            if value is None or isinstance(value, bool):
                raise ValidationError(f"{name} is required", {"field": name})
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValidationError(
                    f"{name} must be a number", {"field": name, "value": value}
                ) from None
            if not math.isfinite(number):
                raise ValidationError(
                    f"{name} must be finite", {"field": name, "value": str(value)}
                )
            if not -bound <= number <= bound:
                raise ValidationError(
                    f"{name} must be within [-{bound:g}, {bound:g}]",
                    {"field": name, "value": number},
                )
            object.__setattr__(self, name, number)

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class DistanceResult:
    distance_km: float
    duration_minutes: int


@dataclass(frozen=True)
class RouteResult:
    order: tuple[int, ...]
    total_distance_km: float
    duration_minutes: int
    input_order_distance_km: float

    @property
    def savings_km(self) -> float:
        return max(0.0, self.input_order_distance_km - self.total_distance_km)


@dataclass(frozen=True)
class TripCost:
    fuel: int
    toll: int
    driver: int
    carbon_kg: float

    @property
    def total(self) -> int:
        return self.fuel + self.toll + self.driver


@dataclass(frozen=True)
class PriceBreakdown:
    """Itemised quote price, whole currency units."""

    base_price: float
    distance_price: float
    weight_price: float
    volume_price: float = 0
    fuel_surcharge: float = 0
    toll_fees: float = 0
    handling_fees: float = 0
    insurance_fees: float = 0
    other_fees: float = 0
    subtotal: float = 0
    taxes: float = 0
    total_price: float = 0

    @property
    def fees(self) -> float:
        """Everything in the subtotal that is not base, distance or weight."""
        return (
            self.volume_price
            + self.fuel_surcharge
            + self.toll_fees
            + self.handling_fees
            + self.insurance_fees
            + self.other_fees
        )

    def items_sum(self) -> float:
        return self.base_price + self.distance_price + self.weight_price + self.fees


@dataclass
class Page(Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def meta(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }
