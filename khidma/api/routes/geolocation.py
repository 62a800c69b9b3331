"""
Geolocation endpoints
=====================

POST /api/v1/geolocation/distance            -- distance between two points
POST /api/v1/geolocation/distance/addresses  -- distance between saved addresses
POST /api/v1/geolocation/route/optimize      -- reorder waypoints, with trip costs
POST /api/v1/geolocation/search/radius       -- saved addresses around a point
GET  /api/v1/geolocation/convert             -- km <-> miles
POST /api/v1/geolocation/region/contains     -- approximate point-in-region test
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request

from khidma.api.dependencies import get_actor, get_geolocation_service
from khidma.api.middleware import limiter
from khidma.api.schemas import (
    AddressDistanceRequest,
    AddressHitOut,
    ConversionResponse,
    DistanceRequest,
    DistanceResponse,
    Envelope,
    RadiusSearchRequest,
    RegionRequest,
    RegionResponse,
    RouteRequest,
    RouteResponse,
    TripCostOut,
)
from khidma.config import settings
from khidma.domain.distance import (
    CircularRegion,
    PolygonRegion,
    distance,
    km_to_miles,
    miles_to_km,
    point_in_region,
    round_half_up,
    travel_time_minutes,
)
from khidma.domain.entities import DistanceResult, TripCost
from khidma.domain.errors import ValidationError
from khidma.services.geolocation import GeolocationService, estimate_trip, plan_route
from khidma.services.identity import Actor

router = APIRouter(prefix="/geolocation", tags=["geolocation"])


def cost_out(cost: TripCost) -> TripCostOut:
    return TripCostOut(
        fuel=cost.fuel,
        toll=cost.toll,
        driver=cost.driver,
        total=cost.total,
        carbon_kg=cost.carbon_kg,
    )


def distance_out(result: DistanceResult, cost: TripCost, travel_time=None) -> DistanceResponse:
    return DistanceResponse(
        distance_km=round_half_up(result.distance_km, 2),
        distance_miles=round_half_up(km_to_miles(result.distance_km), 2),
        duration_minutes=result.duration_minutes,
        travel_time_minutes=travel_time,
        costs=cost_out(cost),
    )


@router.post(
    "/distance",
    response_model=Envelope[DistanceResponse],
    summary="Great-circle distance, duration and trip cost between two points",
)
@limiter.limit(settings.api_rate_limit)
async def point_distance(
    request: Request,
    body: DistanceRequest,
    actor: Actor = Depends(get_actor),
):
    result = distance(body.origin.to_domain(), body.destination.to_domain(), body.vehicle_type)
    travel_time = travel_time_minutes(result.distance_km, body.vehicle_type, body.traffic)
    return Envelope[DistanceResponse](
        data=distance_out(result, estimate_trip(result, body.vehicle_type), travel_time)
    )


@router.post(
    "/distance/addresses",
    response_model=Envelope[DistanceResponse],
    summary="Distance between two saved addresses",
)
@limiter.limit(settings.api_rate_limit)
async def address_distance(
    request: Request,
    body: AddressDistanceRequest,
    actor: Actor = Depends(get_actor),
    service: GeolocationService = Depends(get_geolocation_service),
):
    result, cost = await service.distance_between_addresses(
        body.from_address_id, body.to_address_id, body.vehicle_type
    )
    return Envelope[DistanceResponse](data=distance_out(result, cost))


@router.post(
    "/route/optimize",
    response_model=Envelope[RouteResponse],
    summary="Shorten a multi-stop route; the first waypoint stays first",
)
@limiter.limit(settings.api_rate_limit)
async def optimize(
    request: Request,
    body: RouteRequest,
    actor: Actor = Depends(get_actor),
):
    waypoints = [w.to_domain() for w in body.waypoints]
    route, cost = plan_route(waypoints, body.vehicle_type)
    ordered = [body.waypoints[i] for i in route.order]
    return Envelope[RouteResponse](
        data=RouteResponse(
            order=list(route.order),
            waypoints=ordered,
            total_distance_km=round_half_up(route.total_distance_km, 2),
            input_order_distance_km=round_half_up(route.input_order_distance_km, 2),
            savings_km=round_half_up(route.savings_km, 2),
            duration_minutes=route.duration_minutes,
            costs=cost_out(cost),
        )
    )


@router.post(
    "/search/radius",
    response_model=Envelope[list[AddressHitOut]],
    summary="Saved addresses within a radius, closest first",
)
@limiter.limit(settings.api_rate_limit)
async def search_radius(
    request: Request,
    body: RadiusSearchRequest,
    actor: Actor = Depends(get_actor),
    service: GeolocationService = Depends(get_geolocation_service),
):
    hits = await service.search_radius(
        body.center.to_domain(),
        body.radius_km,
        body.limit,
        user_id=actor.user_id if body.only_mine else None,
    )
    return Envelope[list[AddressHitOut]](
        data=[
            AddressHitOut(
                id=hit.address.id,
                label=hit.address.label,
                city=hit.address.city,
                region=hit.address.region,
                latitude=hit.address.latitude,
                longitude=hit.address.longitude,
                distance_km=round_half_up(hit.distance_km, 2),
            )
            for hit in hits
        ]
    )


@router.get(
    "/convert",
    response_model=Envelope[ConversionResponse],
    summary="Convert a distance between kilometres and miles",
)
@limiter.limit(settings.api_rate_limit)
async def convert(
    request: Request,
    value: float = Query(..., ge=0),
    from_unit: Literal["km", "miles"] = "km",
):
    if from_unit == "km":
        to_unit, result = "miles", km_to_miles(value)
    else:
        to_unit, result = "km", miles_to_km(value)
    return Envelope[ConversionResponse](
        data=ConversionResponse(
            value=value,
            from_unit=from_unit,
            to_unit=to_unit,
            result=round_half_up(result, 4),
        )
    )


@router.post(
    "/region/contains",
    response_model=Envelope[RegionResponse],
    summary="Approximate test of whether a point lies in a region",
)
@limiter.limit(settings.api_rate_limit)
async def region_contains(
    request: Request,
    body: RegionRequest,
    actor: Actor = Depends(get_actor),
):
    given = [
        body.region_name is not None,
        body.center is not None or body.radius_km is not None,
        body.polygon is not None,
    ]
    if sum(given) != 1:
        raise ValidationError(
            "Give exactly one of region_name, center with radius_km, or polygon",
            {"fields": ["region_name", "center", "radius_km", "polygon"]},
        )
    if body.region_name is not None:
        region = body.region_name
    elif body.polygon is not None:
        region = PolygonRegion(tuple(v.to_domain() for v in body.polygon))
    else:
        if body.center is None or body.radius_km is None:
            raise ValidationError(
                "A circular region needs both center and radius_km",
                {"fields": ["center", "radius_km"]},
            )
        region = CircularRegion(body.center.to_domain(), body.radius_km)
    contained = point_in_region(body.point.to_domain(), region)
    return Envelope[RegionResponse](data=RegionResponse(contains=contained))
