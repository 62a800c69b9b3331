"""
Pricing
=======

Two deterministic calculators, both parameterised (never hard-wired to a
currency or region):

* ``TripCostEstimator`` -- operating cost of a trip from distance and
  duration: fuel, tolls, driver time, and the carbon footprint.

      fuel   = distance / 100 x consumption(vehicle) x fuel_price
      toll   = distance x toll_rate
      driver = duration / 60 x hourly_rate
      carbon = distance x co2_factor            (kg, 2 decimals)

* ``QuotePricingEngine`` -- itemised customer price used for automatic
  quotes and for the indicative price shown on a new order.

      subtotal = base + distance + weight + volume + fuel surcharge
                 + tolls + handling + insurance + other fees
      total    = subtotal + subtotal x tax_rate

Money is rounded half-up to whole currency units.  Complexity: O(1).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional

from .distance import round_half_up
from .entities import PriceBreakdown, TripCost
from .enums import GoodsType, VehicleType
from .errors import ValidationError

# litres / 100 km
FUEL_CONSUMPTION: dict[VehicleType, float] = {
    VehicleType.FOURGON: 12.0,
    VehicleType.CAMION_3T: 18.0,
    VehicleType.CAMION_5T: 24.0,
    VehicleType.CAMION_10T: 35.0,
    VehicleType.BENNE: 35.0,
    VehicleType.CAMION_20T: 38.0,
    VehicleType.CITERNE: 40.0,
    VehicleType.CAMION_35T: 42.0,
    VehicleType.REMORQUE: 45.0,
    VehicleType.SEMI_REMORQUE: 48.0,
}

# weight kg, volume m3
VEHICLE_CAPACITIES: dict[VehicleType, tuple[float, float]] = {
    VehicleType.CAMION_3T: (3_000, 15),
    VehicleType.CAMION_5T: (5_000, 25),
    VehicleType.CAMION_10T: (10_000, 50),
    VehicleType.CAMION_20T: (20_000, 100),
    VehicleType.CAMION_35T: (35_000, 175),
    VehicleType.REMORQUE: (40_000, 200),
    VehicleType.SEMI_REMORQUE: (44_000, 220),
    VehicleType.FOURGON: (2_000, 12),
    VehicleType.BENNE: (15_000, 30),
    VehicleType.CITERNE: (25_000, 25),
}

VEHICLE_BASE_PRICES: dict[VehicleType, float] = {
    VehicleType.CAMION_3T: 25_000,
    VehicleType.CAMION_5T: 35_000,
    VehicleType.CAMION_10T: 45_000,
    VehicleType.CAMION_20T: 65_000,
    VehicleType.CAMION_35T: 85_000,
    VehicleType.REMORQUE: 95_000,
    VehicleType.SEMI_REMORQUE: 100_000,
    VehicleType.FOURGON: 20_000,
    VehicleType.BENNE: 40_000,
    VehicleType.CITERNE: 55_000,
}

GOODS_BASE_MULTIPLIERS: dict[GoodsType, float] = {
    GoodsType.PRODUITS_DANGEREUX: 1.8,
    GoodsType.LIQUIDES: 1.4,
    GoodsType.PRODUITS_CHIMIQUES: 1.6,
    GoodsType.VEHICULES: 1.3,
    GoodsType.BETAIL: 1.5,
    GoodsType.PRODUITS_ALIMENTAIRES: 1.2,
    GoodsType.MATERIAUX_CONSTRUCTION: 1.1,
    GoodsType.EQUIPEMENTS: 1.25,
    GoodsType.MOBILIER: 1.15,
    GoodsType.TEXTILES: 1.05,
}

# Coarser table used for the indicative price of a new order
ORDER_GOODS_MULTIPLIERS: dict[GoodsType, float] = {
    GoodsType.PRODUITS_DANGEREUX: 1.5,
    GoodsType.LIQUIDES: 1.3,
    GoodsType.PRODUITS_CHIMIQUES: 1.4,
    GoodsType.VEHICULES: 1.2,
    GoodsType.BETAIL: 1.3,
}

HEAVY_VEHICLE_KM_MULTIPLIERS: dict[VehicleType, float] = {
    VehicleType.CAMION_35T: 1.3,
    VehicleType.REMORQUE: 1.4,
    VehicleType.SEMI_REMORQUE: 1.5,
}

REQUIREMENT_FEES: dict[str, float] = {
    "Fragile": 5_000,
    "Réfrigéré": 15_000,
    "Urgent": 10_000,
    "Sécurisé": 8_000,
    "Manutention délicate": 7_000,
    "Chargement/Déchargement": 5_000,
    "Emballage spécial": 6_000,
}

GOODS_HANDLING_FEES: dict[GoodsType, float] = {
    GoodsType.PRODUITS_DANGEREUX: 20_000,
    GoodsType.LIQUIDES: 8_000,
    GoodsType.PRODUITS_CHIMIQUES: 15_000,
    GoodsType.BETAIL: 12_000,
    GoodsType.VEHICULES: 10_000,
}


def _whole(value: float) -> int:
    return int(round_half_up(value))


def _require_non_negative(**values: Optional[float]) -> None:
    for name, value in values.items():
        if value is None:
            continue
        if not math.isfinite(value) or value < 0:
            raise ValidationError(
                f"{name} must be a finite, non-negative number",
                {"field": name, "value": str(value)},
            )


# ── Trip cost estimation ──────────────────────────────────────────────


@dataclass(frozen=True)
class CostParameters:
    fuel_price_per_litre: float = 720.0
    toll_rate_per_km: float = 15.0
    driver_hourly_rate: float = 2_000.0
    co2_kg_per_km: float = 0.8
    default_fuel_consumption: float = 35.0
    fuel_consumption: dict[VehicleType, float] = field(
        default_factory=lambda: dict(FUEL_CONSUMPTION)
    )

    @classmethod
    def from_settings(cls, settings) -> "CostParameters":
        return cls(
            fuel_price_per_litre=settings.fuel_price_per_litre,
            toll_rate_per_km=settings.toll_rate_per_km,
            driver_hourly_rate=settings.driver_hourly_rate,
            co2_kg_per_km=settings.co2_kg_per_km,
            default_fuel_consumption=settings.default_fuel_consumption_l_per_100km,
        )

    def consumption_for(self, vehicle_type: Optional[VehicleType]) -> float:
        if vehicle_type is None:
            return self.default_fuel_consumption
        return self.fuel_consumption.get(
            VehicleType(vehicle_type), self.default_fuel_consumption
        )


class TripCostEstimator:
    def __init__(self, params: Optional[CostParameters] = None):
        self.params = params or CostParameters()

    def fuel_cost(
        self, distance_km: float, vehicle_type: Optional[VehicleType] = None
    ) -> int:
        litres = distance_km / 100 * self.params.consumption_for(vehicle_type)
        return _whole(litres * self.params.fuel_price_per_litre)

    def toll_cost(self, distance_km: float) -> int:
        return _whole(distance_km * self.params.toll_rate_per_km)

    def driver_cost(self, duration_minutes: float) -> int:
        return _whole(duration_minutes / 60 * self.params.driver_hourly_rate)

    def carbon_footprint(self, distance_km: float) -> float:
        return round_half_up(distance_km * self.params.co2_kg_per_km, 2)

    def estimate(
        self,
        distance_km: float,
        duration_minutes: float,
        vehicle_type: Optional[VehicleType] = None,
    ) -> TripCost:
        _require_non_negative(
            distance_km=distance_km, duration_minutes=duration_minutes
        )
        return TripCost(
            fuel=self.fuel_cost(distance_km, vehicle_type),
            toll=self.toll_cost(distance_km),
            driver=self.driver_cost(duration_minutes),
            carbon_kg=self.carbon_footprint(distance_km),
        )


# ── Quote pricing ─────────────────────────────────────────────────────


class QuotePricingEngine:
    """Itemised price for a shipment carried by a given vehicle type."""

    def __init__(
        self,
        base_price: float = 25_000.0,
        price_per_km: float = 150.0,
        price_per_ton: float = 5_000.0,
        fuel_surcharge_rate: float = 0.10,
        insurance_rate: float = 0.005,
        insurance_minimum: float = 2_000.0,
        tax_rate: float = 0.18,
        toll_rate_per_km: float = 15.0,
        urgent_fee: float = 15_000.0,
        weekend_fee: float = 8_000.0,
        vehicle_base_prices: Optional[Mapping[VehicleType, float]] = None,
    ):
        # base_price prices vehicle types missing from vehicle_base_prices
        # and anchors the indicative order price
        self.base_price = base_price
        self.price_per_km = price_per_km
        self.price_per_ton = price_per_ton
        self.fuel_surcharge_rate = fuel_surcharge_rate
        self.insurance_rate = insurance_rate
        self.insurance_minimum = insurance_minimum
        self.tax_rate = tax_rate
        self.toll_rate_per_km = toll_rate_per_km
        self.urgent_fee = urgent_fee
        self.weekend_fee = weekend_fee
        self.vehicle_base_prices = dict(
            VEHICLE_BASE_PRICES if vehicle_base_prices is None else vehicle_base_prices
        )

    @classmethod
    def from_settings(cls, settings) -> "QuotePricingEngine":
        return cls(
            base_price=settings.base_price,
            price_per_km=settings.price_per_km,
            price_per_ton=settings.price_per_ton,
            fuel_surcharge_rate=settings.fuel_surcharge_rate,
            insurance_rate=settings.insurance_rate,
            insurance_minimum=settings.insurance_minimum,
            tax_rate=settings.tax_rate,
            toll_rate_per_km=settings.toll_rate_per_km,
            urgent_fee=settings.urgent_fee,
            weekend_fee=settings.weekend_fee,
            vehicle_base_prices={
                VehicleType(name): price
                for name, price in settings.vehicle_base_prices.items()
            },
        )

    # -- items --

    def base(self, vehicle_type: VehicleType, goods_type: GoodsType) -> float:
        price = self.vehicle_base_prices.get(vehicle_type, self.base_price)
        return price * GOODS_BASE_MULTIPLIERS.get(goods_type, 1.0)

    def distance_price(self, distance_km: float, vehicle_type: VehicleType) -> float:
        per_km = self.price_per_km
        if distance_km > 500:
            per_km *= 0.8
        elif distance_km > 200:
            per_km *= 0.9
        per_km *= HEAVY_VEHICLE_KM_MULTIPLIERS.get(vehicle_type, 1.0)
        return distance_km * per_km

    def weight_price(self, weight_kg: float) -> float:
        tons = weight_kg / 1000
        per_ton = self.price_per_ton
        if tons > 20:
            per_ton *= 0.85
        elif tons > 10:
            per_ton *= 0.92
        elif tons > 5:
            per_ton *= 0.95
        return tons * per_ton

    @staticmethod
    def volume_price(volume_m3: Optional[float], vehicle_type: VehicleType) -> float:
        if not volume_m3:
            return 0.0
        capacity = VEHICLE_CAPACITIES.get(vehicle_type)
        if capacity is None:
            return 0.0
        vehicle_volume = capacity[1]
        per_m3 = 800 if vehicle_volume > 100 else 1_200
        occupancy = volume_m3 / vehicle_volume
        multiplier = 1.0
        if occupancy > 0.8:
            multiplier = 1.2
        elif occupancy > 0.6:
            multiplier = 1.1
        return volume_m3 * per_m3 * multiplier

    def toll_fees(self, distance_km: float) -> float:
        # tolled share of the trip grows with distance
        if distance_km > 100:
            return distance_km * self.toll_rate_per_km * 0.6
        if distance_km > 50:
            return distance_km * self.toll_rate_per_km * 0.3
        return 0.0

    @staticmethod
    def handling_fees(
        special_requirements: Iterable[str], goods_type: GoodsType
    ) -> float:
        fees = sum(REQUIREMENT_FEES.get(r, 0) for r in special_requirements)
        return fees + GOODS_HANDLING_FEES.get(goods_type, 0)

    def insurance_fees(self, declared_value: Optional[float]) -> float:
        if not declared_value or declared_value <= 0:
            return self.insurance_minimum
        return max(declared_value * self.insurance_rate, self.insurance_minimum)

    def other_fees(self, urgent: bool, departure_date: Optional[date]) -> float:
        fees = 0.0
        if urgent:
            fees += self.urgent_fee
        if departure_date is not None and departure_date.weekday() >= 5:
            fees += self.weekend_fee
        return fees

    # -- totals --

    def price(
        self,
        *,
        vehicle_type: VehicleType,
        goods_type: GoodsType,
        weight_kg: float,
        distance_km: float,
        volume_m3: Optional[float] = None,
        special_requirements: Iterable[str] = (),
        declared_value: Optional[float] = None,
        urgent: bool = False,
        departure_date: Optional[date] = None,
    ) -> PriceBreakdown:
        _require_non_negative(
            weight_kg=weight_kg, distance_km=distance_km, volume_m3=volume_m3
        )
        vehicle_type = VehicleType(vehicle_type)
        goods_type = GoodsType(goods_type)

        base = _whole(self.base(vehicle_type, goods_type))
        dist = _whole(self.distance_price(distance_km, vehicle_type))
        weight = _whole(self.weight_price(weight_kg))
        volume = _whole(self.volume_price(volume_m3, vehicle_type))
        fuel = _whole((base + dist + weight) * self.fuel_surcharge_rate)
        tolls = _whole(self.toll_fees(distance_km))
        handling = _whole(self.handling_fees(special_requirements, goods_type))
        insurance = _whole(self.insurance_fees(declared_value))
        other = _whole(self.other_fees(urgent, departure_date))

        subtotal = (
            base + dist + weight + volume + fuel + tolls + handling + insurance + other
        )
        taxes = _whole(subtotal * self.tax_rate)
        return PriceBreakdown(
            base_price=base,
            distance_price=dist,
            weight_price=weight,
            volume_price=volume,
            fuel_surcharge=fuel,
            toll_fees=tolls,
            handling_fees=handling,
            insurance_fees=insurance,
            other_fees=other,
            subtotal=subtotal,
            taxes=taxes,
            total_price=subtotal + taxes,
        )

    def indicative_price(
        self,
        weight_kg: float,
        distance_km: Optional[float],
        goods_type: Optional[GoodsType] = None,
    ) -> int:
        """Rough price shown on a freshly created order, before any quote."""
        price = self.base_price
        if distance_km:
            price += distance_km * self.price_per_km
        price += weight_kg / 1000 * self.price_per_ton
        if goods_type is not None:
            price *= ORDER_GOODS_MULTIPLIERS.get(GoodsType(goods_type), 1.0)
        return _whole(price)


def validate_breakdown(breakdown: PriceBreakdown, tolerance: float = 1.0) -> None:
    """Reject negative items and totals that do not add up."""
    errors: list[dict[str, str]] = []
    for name in (
        "base_price", "distance_price", "weight_price", "volume_price",
        "fuel_surcharge", "toll_fees", "handling_fees", "insurance_fees",
        "other_fees", "subtotal", "taxes", "total_price",
    ):
        value = getattr(breakdown, name)
        if not math.isfinite(value) or value < 0:
            errors.append({"field": name, "message": f"{name} cannot be negative"})
    if breakdown.total_price <= 0:
        errors.append({"field": "total_price", "message": "total_price must be positive"})
    if abs(breakdown.items_sum() - breakdown.subtotal) > tolerance:
        errors.append(
            {"field": "subtotal", "message": "subtotal does not match the sum of items"}
        )
    if abs(breakdown.subtotal + breakdown.taxes - breakdown.total_price) > tolerance:
        errors.append(
            {"field": "total_price", "message": "total_price does not match subtotal + taxes"}
        )
    if errors:
        raise ValidationError("Invalid price breakdown", {"errors": errors})
