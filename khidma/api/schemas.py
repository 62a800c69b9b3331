"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, Field

from khidma.domain.entities import Coordinate, PriceBreakdown
from khidma.domain.enums import (
    GoodsType,
    OrderStatus,
    Priority,
    QuoteStatus,
    TrafficCondition,
    VehicleType,
)
from khidma.services.quotes import QuoteTerms

T = TypeVar("T")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# naive input is taken as UTC
UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


# ── Requests ──────────────────────────────────────────────────────────


class CoordinateIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class OrderCreateRequest(BaseModel):
    departure_address_id: int
    destination_address_id: int
    departure_date: UTCDateTime
    delivery_date: Optional[UTCDateTime] = None
    goods_type: GoodsType
    goods_description: str = Field(..., min_length=10, max_length=1000)
    weight_kg: float = Field(..., gt=0, le=50_000)
    volume_m3: Optional[float] = Field(None, gt=0, le=300)
    quantity: Optional[int] = Field(None, ge=1)
    declared_value: Optional[float] = Field(None, ge=0)
    special_requirements: list[str] = Field(default_factory=list, max_length=10)
    priority: Priority = Priority.NORMAL
    notes: Optional[str] = Field(None, max_length=1000)


class CancelRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class CompleteRequest(BaseModel):
    delivery_proof: list[str] = Field(default_factory=list)
    signature: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


class AssignVehicleRequest(BaseModel):
    vehicle_id: int


class PositionUpdateRequest(CoordinateIn):
    speed_kmh: Optional[float] = Field(None, ge=0, le=200)
    heading: Optional[float] = Field(None, ge=0, le=360)


class BreakdownIn(BaseModel):
    base_price: float = Field(..., ge=0)
    distance_price: float = Field(..., ge=0)
    weight_price: float = Field(..., ge=0)
    volume_price: float = Field(0, ge=0)
    fuel_surcharge: float = Field(0, ge=0)
    toll_fees: float = Field(0, ge=0)
    handling_fees: float = Field(0, ge=0)
    insurance_fees: float = Field(0, ge=0)
    other_fees: float = Field(0, ge=0)
    subtotal: float = Field(..., ge=0)
    taxes: float = Field(..., ge=0)
    total_price: float = Field(..., gt=0)

    def to_domain(self) -> PriceBreakdown:
        return PriceBreakdown(**self.model_dump())


class TermsIn(BaseModel):
    payment_terms: Optional[str] = Field(None, max_length=500)
    delivery_terms: Optional[str] = Field(None, max_length=500)
    conditions: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)

    def terms(self) -> QuoteTerms:
        return QuoteTerms(**self.model_dump(include=set(TermsIn.model_fields)))


class QuoteCreateRequest(TermsIn):
    order_id: int
    vehicle_id: Optional[int] = None
    pricing: BreakdownIn
    valid_until: UTCDateTime


class AutoQuoteRequest(TermsIn):
    order_id: int
    vehicle_id: Optional[int] = None


class QuoteUpdateRequest(TermsIn):
    vehicle_id: Optional[int] = None
    pricing: Optional[BreakdownIn] = None
    valid_until: Optional[UTCDateTime] = None


class QuoteReviseRequest(TermsIn):
    vehicle_id: Optional[int] = None
    pricing: BreakdownIn
    valid_until: UTCDateTime


class QuoteRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DistanceRequest(BaseModel):
    origin: CoordinateIn
    destination: CoordinateIn
    vehicle_type: Optional[VehicleType] = None
    traffic: TrafficCondition = TrafficCondition.MEDIUM


class AddressDistanceRequest(BaseModel):
    from_address_id: int
    to_address_id: int
    vehicle_type: Optional[VehicleType] = None


class RouteRequest(BaseModel):
    # size is checked by the optimizer so errors carry their own kind
    waypoints: list[CoordinateIn]
    vehicle_type: Optional[VehicleType] = None


class RadiusSearchRequest(BaseModel):
    center: CoordinateIn
    radius_km: float
    limit: int = 20
    only_mine: bool = False


class RegionRequest(BaseModel):
    point: CoordinateIn
    region_name: Optional[str] = None
    center: Optional[CoordinateIn] = None
    radius_km: Optional[float] = Field(None, gt=0)
    polygon: Optional[list[CoordinateIn]] = None


# ── Responses ─────────────────────────────────────────────────────────


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: Optional[str] = None


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PagedEnvelope(BaseModel, Generic[T]):
    success: bool = True
    data: list[T]
    pagination: PageMeta


class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    version: int
    shipper_id: int
    carrier_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    departure_address_id: int
    destination_address_id: int
    departure_lat: float
    departure_lng: float
    destination_lat: float
    destination_lng: float
    departure_date: datetime
    delivery_date: Optional[datetime] = None
    goods_type: GoodsType
    goods_description: str
    weight_kg: float
    volume_m3: Optional[float] = None
    quantity: Optional[int] = None
    declared_value: Optional[float] = None
    special_requirements: list[str] = []
    priority: Priority
    notes: Optional[str] = None
    estimated_distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    estimated_price: Optional[float] = None
    base_price: Optional[float] = None
    distance_price: Optional[float] = None
    weight_price: Optional[float] = None
    fees_price: Optional[float] = None
    tax_amount: Optional[float] = None
    total_price: Optional[float] = None
    cancellation_reason: Optional[str] = None
    delivery_proof: Optional[list[str]] = None
    signature: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    id: int
    quote_number: str
    order_id: int
    carrier_id: int
    vehicle_id: Optional[int] = None
    status: QuoteStatus
    version: int
    base_price: float
    distance_price: float
    weight_price: float
    volume_price: float
    fuel_surcharge: float
    toll_fees: float
    handling_fees: float
    insurance_fees: float
    other_fees: float
    subtotal: float
    taxes: float
    total_price: float
    valid_until: datetime
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None
    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    revised_from_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AcceptedQuote(BaseModel):
    quote: QuoteResponse
    order: OrderResponse


class TripCostOut(BaseModel):
    fuel: int
    toll: int
    driver: int
    total: int
    carbon_kg: float


class DistanceResponse(BaseModel):
    distance_km: float
    distance_miles: float
    duration_minutes: int
    travel_time_minutes: Optional[int] = None
    costs: TripCostOut


class RouteResponse(BaseModel):
    order: list[int]
    waypoints: list[CoordinateIn]
    total_distance_km: float
    input_order_distance_km: float
    savings_km: float
    duration_minutes: int
    costs: TripCostOut


class AddressHitOut(BaseModel):
    id: int
    label: str
    city: str
    region: Optional[str] = None
    latitude: float
    longitude: float
    distance_km: float


class ConversionResponse(BaseModel):
    value: float
    from_unit: str
    to_unit: str
    result: float


class RegionResponse(BaseModel):
    contains: bool
    approximate: bool = True


class PositionResponse(BaseModel):
    order_id: int
    latitude: float
    longitude: float
    speed_kmh: Optional[float] = None
    heading: Optional[float] = None
    recorded_at: datetime
    remaining_distance_km: float
    eta_minutes: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ExpirySweepResponse(BaseModel):
    expired: int
    skipped: bool = False


class ErrorBody(BaseModel):
    kind: str
    message: str
    details: dict = {}
    retryable: bool = False


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody
