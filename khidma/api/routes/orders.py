"""
Transport order endpoints
=========================

POST /api/v1/orders                          -- create an order (shipper)
GET  /api/v1/orders                          -- orders of the caller
GET  /api/v1/orders/search                   -- open orders, filtered
GET  /api/v1/orders/{order_id}               -- one order
POST /api/v1/orders/{order_id}/start         -- CONFIRME -> EN_TRANSIT
POST /api/v1/orders/{order_id}/complete      -- EN_TRANSIT -> LIVRE
POST /api/v1/orders/{order_id}/finalize      -- LIVRE -> TERMINE (admin)
POST /api/v1/orders/{order_id}/cancel        -- any open status -> ANNULE
POST /api/v1/orders/{order_id}/vehicle       -- attach a vehicle
POST /api/v1/orders/{order_id}/position      -- report vehicle position
GET  /api/v1/orders/{order_id}/position      -- last known position
GET  /api/v1/orders/{order_id}/quotes        -- quotes received
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request

from khidma.api.dependencies import (
    get_actor,
    get_order_service,
    get_quote_service,
    get_tracking_service,
    rate_limit,
)
from khidma.api.middleware import limiter
from khidma.api.schemas import (
    AssignVehicleRequest,
    CancelRequest,
    CompleteRequest,
    Envelope,
    OrderCreateRequest,
    OrderResponse,
    PagedEnvelope,
    PageMeta,
    PositionResponse,
    PositionUpdateRequest,
    QuoteResponse,
    UTCDateTime,
)
from khidma.config import settings
from khidma.domain.entities import Page
from khidma.domain.enums import GoodsType, OrderStatus
from khidma.infrastructure.repositories import OrderFilters
from khidma.services.identity import Actor
from khidma.services.orders import OrderDraft, OrderService
from khidma.services.quotes import QuoteService
from khidma.services.tracking import TrackingService

router = APIRouter(prefix="/orders", tags=["orders"])

SortOrder = Literal["asc", "desc"]


def order_envelope(order, message: Optional[str] = None) -> Envelope[OrderResponse]:
    return Envelope[OrderResponse](
        data=OrderResponse.model_validate(order), message=message
    )


def order_page(page: Page) -> PagedEnvelope[OrderResponse]:
    return PagedEnvelope[OrderResponse](
        data=[OrderResponse.model_validate(o) for o in page.items],
        pagination=PageMeta(**page.meta()),
    )


@router.post(
    "",
    status_code=201,
    response_model=Envelope[OrderResponse],
    summary="Create a transport order",
)
@limiter.limit(settings.api_rate_limit)
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.create_order(actor, OrderDraft(**body.model_dump()))
    return order_envelope(order, "Order created")


@router.get(
    "",
    response_model=PagedEnvelope[OrderResponse],
    summary="List the caller's orders",
)
@limiter.limit(settings.api_rate_limit)
async def list_orders(
    request: Request,
    status: Optional[list[OrderStatus]] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Literal["date", "price", "status"] = "date",
    sort_order: SortOrder = "desc",
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    result = await service.list_orders(actor, status, page, limit, sort_by, sort_order)
    return order_page(result)


@router.get(
    "/search",
    response_model=PagedEnvelope[OrderResponse],
    summary="Search orders open for quotes",
)
@limiter.limit(settings.api_rate_limit)
async def search_orders(
    request: Request,
    goods_type: Optional[GoodsType] = None,
    min_weight_kg: Optional[float] = Query(None, ge=0),
    max_weight_kg: Optional[float] = Query(None, ge=0),
    departure_from: Optional[UTCDateTime] = None,
    departure_to: Optional[UTCDateTime] = None,
    max_distance_km: Optional[float] = Query(None, gt=0),
    status: Optional[list[OrderStatus]] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Literal["date", "price", "distance", "departure"] = "date",
    sort_order: SortOrder = "desc",
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    filters = OrderFilters(
        statuses=list(status or []),
        goods_type=goods_type,
        min_weight_kg=min_weight_kg,
        max_weight_kg=max_weight_kg,
        departure_from=departure_from,
        departure_to=departure_to,
        max_distance_km=max_distance_km,
    )
    result = await service.search_orders(filters, page, limit, sort_by, sort_order)
    return order_page(result)


@router.get(
    "/{order_id}",
    response_model=Envelope[OrderResponse],
    summary="Get one order",
)
@limiter.limit(settings.api_rate_limit)
async def get_order(
    request: Request,
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    return order_envelope(await service.get_order(actor, order_id))


@router.post(
    "/{order_id}/start",
    response_model=Envelope[OrderResponse],
    summary="Start transport (assigned carrier)",
)
@limiter.limit(settings.api_rate_limit)
async def start_order(
    request: Request,
    order_id: int,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.start_order(actor, order_id)
    return order_envelope(order, "Transport started")


@router.post(
    "/{order_id}/complete",
    response_model=Envelope[OrderResponse],
    summary="Mark delivered (assigned carrier)",
)
@limiter.limit(settings.api_rate_limit)
async def complete_order(
    request: Request,
    order_id: int,
    body: CompleteRequest,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.complete_order(
        actor, order_id, body.delivery_proof, body.signature, body.notes
    )
    return order_envelope(order, "Order delivered")


@router.post(
    "/{order_id}/finalize",
    response_model=Envelope[OrderResponse],
    summary="Close a delivered order (admin)",
)
@limiter.limit(settings.api_rate_limit)
async def finalize_order(
    request: Request,
    order_id: int,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.finalize_order(actor, order_id)
    return order_envelope(order, "Order finalized")


@router.post(
    "/{order_id}/cancel",
    response_model=Envelope[OrderResponse],
    summary="Cancel an order (shipper or assigned carrier)",
)
@limiter.limit(settings.api_rate_limit)
async def cancel_order(
    request: Request,
    order_id: int,
    body: CancelRequest,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel_order(actor, order_id, body.reason)
    return order_envelope(order, "Order cancelled")


@router.post(
    "/{order_id}/vehicle",
    response_model=Envelope[OrderResponse],
    summary="Assign a vehicle to a confirmed order",
)
@limiter.limit(settings.api_rate_limit)
async def assign_vehicle(
    request: Request,
    order_id: int,
    body: AssignVehicleRequest,
    actor: Actor = Depends(rate_limit("order")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.assign_vehicle(actor, order_id, body.vehicle_id)
    return order_envelope(order, "Vehicle assigned")


@router.post(
    "/{order_id}/position",
    response_model=Envelope[PositionResponse],
    summary="Report the vehicle position",
)
@limiter.limit("300/minute")
async def update_position(
    request: Request,
    order_id: int,
    body: PositionUpdateRequest,
    actor: Actor = Depends(rate_limit("tracking")),
    service: TrackingService = Depends(get_tracking_service),
):
    report = await service.update_position(
        actor, order_id, body.to_domain(), body.speed_kmh, body.heading
    )
    return Envelope[PositionResponse](data=PositionResponse.model_validate(report))


@router.get(
    "/{order_id}/position",
    response_model=Envelope[PositionResponse],
    summary="Last known vehicle position",
)
@limiter.limit("300/minute")
async def get_position(
    request: Request,
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: TrackingService = Depends(get_tracking_service),
):
    report = await service.get_position(actor, order_id)
    return Envelope[PositionResponse](data=PositionResponse.model_validate(report))


@router.get(
    "/{order_id}/quotes",
    response_model=Envelope[list[QuoteResponse]],
    summary="Quotes received on an order, cheapest first",
)
@limiter.limit(settings.api_rate_limit)
async def list_order_quotes(
    request: Request,
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: QuoteService = Depends(get_quote_service),
):
    quotes = await service.list_order_quotes(actor, order_id)
    return Envelope[list[QuoteResponse]](
        data=[QuoteResponse.model_validate(q) for q in quotes]
    )
