"""Unit tests for trip cost estimation and quote pricing."""

from dataclasses import replace
from datetime import date

import pytest

from khidma.config import Settings
from khidma.domain.entities import PriceBreakdown
from khidma.domain.enums import GoodsType, VehicleType
from khidma.domain.errors import ValidationError
from khidma.domain.pricing import (
    CostParameters,
    QuotePricingEngine,
    TripCostEstimator,
    validate_breakdown,
)


class TestTripCostEstimator:
    def setup_method(self):
        self.estimator = TripCostEstimator()

    def test_medium_truck_100_km(self):
        cost = self.estimator.estimate(100, 100, VehicleType.CAMION_10T)
        assert cost.fuel == 25_200  # 35 L x 720
        assert cost.toll == 1_500  # 100 x 15
        assert cost.driver == 3_333  # 100 min at 2000/h
        assert cost.carbon_kg == 80.0
        assert cost.total == 30_033

    def test_unknown_vehicle_uses_default_consumption(self):
        assert self.estimator.fuel_cost(100) == self.estimator.fuel_cost(
            100, VehicleType.CAMION_10T
        )

    def test_van_burns_less(self):
        assert self.estimator.fuel_cost(100, VehicleType.FOURGON) < self.estimator.fuel_cost(
            100, VehicleType.SEMI_REMORQUE
        )

    def test_zero_trip(self):
        cost = self.estimator.estimate(0, 0)
        assert (cost.fuel, cost.toll, cost.driver, cost.carbon_kg) == (0, 0, 0, 0)

    def test_parameters_are_configurable(self):
        estimator = TripCostEstimator(CostParameters(fuel_price_per_litre=1000))
        assert estimator.fuel_cost(100, VehicleType.CAMION_10T) == 35_000

    @pytest.mark.parametrize("distance_km, minutes", [(-1, 10), (10, -5), (float("nan"), 1)])
    def test_rejects_negative_input(self, distance_km, minutes):
        with pytest.raises(ValidationError):
            self.estimator.estimate(distance_km, minutes)


class TestQuotePricingEngine:
    def setup_method(self):
        self.engine = QuotePricingEngine()

    def test_full_breakdown(self):
        b = self.engine.price(
            vehicle_type=VehicleType.CAMION_10T,
            goods_type=GoodsType.MATERIAUX_CONSTRUCTION,
            weight_kg=10_000,
            distance_km=100,
        )
        assert b.base_price == 49_500  # 45000 x 1.1
        assert b.distance_price == 15_000
        assert b.weight_price == 47_500  # 10 t at 5000 x 0.95
        assert b.volume_price == 0
        assert b.fuel_surcharge == 11_200  # 10% of base + distance + weight
        assert b.toll_fees == 450  # 100 km: 30% tolled at 15/km
        assert b.handling_fees == 0
        assert b.insurance_fees == 2_000  # minimum
        assert b.other_fees == 0
        assert b.subtotal == 125_650
        assert b.taxes == 22_617
        assert b.total_price == 148_267
        validate_breakdown(b)

    def test_long_distance_discount(self):
        assert self.engine.distance_price(300, VehicleType.CAMION_10T) == pytest.approx(40_500)
        assert self.engine.distance_price(600, VehicleType.SEMI_REMORQUE) == pytest.approx(108_000)

    def test_weight_tiers(self):
        assert self.engine.weight_price(5_000) == 25_000
        assert self.engine.weight_price(20_000) == pytest.approx(92_000)
        assert self.engine.weight_price(30_000) == pytest.approx(127_500)

    def test_volume_occupancy(self):
        assert self.engine.volume_price(30, VehicleType.CAMION_10T) == 36_000
        assert self.engine.volume_price(45, VehicleType.CAMION_10T) == pytest.approx(64_800)
        assert self.engine.volume_price(None, VehicleType.CAMION_10T) == 0

    def test_handling_fees(self):
        fees = self.engine.handling_fees(["Fragile", "Réfrigéré", "Inconnu"], GoodsType.LIQUIDES)
        assert fees == 5_000 + 15_000 + 8_000

    def test_insurance(self):
        assert self.engine.insurance_fees(1_000_000) == 5_000
        assert self.engine.insurance_fees(100_000) == 2_000
        assert self.engine.insurance_fees(None) == 2_000

    def test_urgent_weekend_fees(self):
        saturday = date(2026, 10, 24)
        assert self.engine.other_fees(True, saturday) == 23_000
        assert self.engine.other_fees(False, date(2026, 10, 21)) == 0

    def test_total_is_subtotal_plus_tax(self):
        b = self.engine.price(
            vehicle_type=VehicleType.CITERNE,
            goods_type=GoodsType.LIQUIDES,
            weight_kg=18_000,
            distance_km=420,
            volume_m3=20,
            special_requirements=["Sécurisé"],
            declared_value=4_000_000,
            urgent=True,
        )
        assert b.subtotal == b.items_sum()
        assert b.total_price == b.subtotal + b.taxes

    def test_rejects_negative_weight(self):
        with pytest.raises(ValidationError):
            self.engine.price(
                vehicle_type=VehicleType.CAMION_3T,
                goods_type=GoodsType.AUTRE,
                weight_kg=-1,
                distance_km=10,
            )

    def test_indicative_price(self):
        assert self.engine.indicative_price(10_000, 100) == 90_000
        assert self.engine.indicative_price(10_000, 100, GoodsType.LIQUIDES) == 117_000
        assert self.engine.indicative_price(1_000, None) == 30_000


class TestPricingConfiguration:
    def test_vehicle_base_table_drives_base_price(self):
        engine = QuotePricingEngine(
            vehicle_base_prices={VehicleType.CAMION_10T: 60_000}
        )
        assert engine.base(VehicleType.CAMION_10T, GoodsType.AUTRE) == 60_000
        # missing from the table: flat base price
        assert engine.base(VehicleType.FOURGON, GoodsType.AUTRE) == 25_000

    def test_toll_rate_shared_with_trip_cost(self):
        settings = Settings(toll_rate_per_km=0)
        engine = QuotePricingEngine.from_settings(settings)
        estimator = TripCostEstimator(CostParameters.from_settings(settings))
        assert engine.toll_fees(200) == 0
        assert estimator.toll_cost(200) == 0

    def test_default_toll_rates_agree(self):
        settings = Settings()
        engine = QuotePricingEngine.from_settings(settings)
        estimator = TripCostEstimator(CostParameters.from_settings(settings))
        # long trips: 60% of the route is tolled
        assert engine.toll_fees(200) == pytest.approx(estimator.toll_cost(200) * 0.6)

    def test_changed_settings_change_the_price(self):
        shipment = dict(
            vehicle_type=VehicleType.CAMION_10T,
            goods_type=GoodsType.AUTRE,
            weight_kg=8_000,
            distance_km=150,
            urgent=True,
            departure_date=date(2026, 10, 24),
        )
        default = QuotePricingEngine.from_settings(Settings()).price(**shipment)
        tuned = QuotePricingEngine.from_settings(
            Settings(
                urgent_fee=0,
                weekend_fee=1_000,
                toll_rate_per_km=10,
                vehicle_base_prices={"CAMION_10T": 50_000},
            )
        ).price(**shipment)

        assert default.other_fees == 23_000
        assert tuned.other_fees == 1_000
        assert default.base_price == 45_000
        assert tuned.base_price == 50_000
        assert default.toll_fees == 1_350  # 150 x 15 x 0.6
        assert tuned.toll_fees == 900
        assert tuned.total_price != default.total_price


class TestValidateBreakdown:
    VALID = PriceBreakdown(
        base_price=45_000,
        distance_price=150_000,
        weight_price=50_000,
        fuel_surcharge=15_000,
        subtotal=260_000,
        taxes=46_800,
        total_price=306_800,
    )

    def test_valid(self):
        validate_breakdown(self.VALID)

    def test_rounding_tolerance(self):
        validate_breakdown(replace(self.VALID, total_price=306_801))

    def test_subtotal_mismatch(self):
        with pytest.raises(ValidationError) as exc:
            validate_breakdown(replace(self.VALID, subtotal=250_000, total_price=296_800))
        fields = [e["field"] for e in exc.value.details["errors"]]
        assert fields == ["subtotal"]

    def test_total_mismatch(self):
        with pytest.raises(ValidationError):
            validate_breakdown(replace(self.VALID, total_price=400_000))

    def test_negative_item(self):
        with pytest.raises(ValidationError):
            validate_breakdown(replace(self.VALID, toll_fees=-10))

    def test_zero_total(self):
        with pytest.raises(ValidationError):
            validate_breakdown(PriceBreakdown(0, 0, 0))
