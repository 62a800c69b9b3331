"""
Quote endpoints
===============

POST   /api/v1/quotes                     -- draft a quote (carrier)
POST   /api/v1/quotes/auto                -- draft a priced quote for a matched vehicle
GET    /api/v1/quotes                     -- the carrier's quotes
GET    /api/v1/quotes/{quote_id}          -- one quote
PATCH  /api/v1/quotes/{quote_id}          -- edit a draft
DELETE /api/v1/quotes/{quote_id}          -- delete a draft
POST   /api/v1/quotes/{quote_id}/send     -- BROUILLON -> ENVOYE
POST   /api/v1/quotes/{quote_id}/accept   -- ENVOYE -> ACCEPTE, order confirmed (shipper)
POST   /api/v1/quotes/{quote_id}/reject   -- ENVOYE -> REFUSE (shipper)
POST   /api/v1/quotes/{quote_id}/revise   -- ENVOYE -> MODIFIE plus a new draft
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from khidma.api.dependencies import get_actor, get_quote_service, rate_limit
from khidma.api.middleware import limiter
from khidma.api.schemas import (
    AcceptedQuote,
    AutoQuoteRequest,
    Envelope,
    OrderResponse,
    PagedEnvelope,
    PageMeta,
    QuoteCreateRequest,
    QuoteRejectRequest,
    QuoteResponse,
    QuoteReviseRequest,
    QuoteUpdateRequest,
)
from khidma.config import settings
from khidma.domain.enums import QuoteStatus
from khidma.services.identity import Actor
from khidma.services.quotes import QuoteDraft, QuoteService

router = APIRouter(prefix="/quotes", tags=["quotes"])


def quote_envelope(quote, message: Optional[str] = None) -> Envelope[QuoteResponse]:
    return Envelope[QuoteResponse](
        data=QuoteResponse.model_validate(quote), message=message
    )


@router.post(
    "",
    status_code=201,
    response_model=Envelope[QuoteResponse],
    summary="Draft a quote",
)
@limiter.limit(settings.api_rate_limit)
async def create_quote(
    request: Request,
    body: QuoteCreateRequest,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    draft = QuoteDraft(
        order_id=body.order_id,
        breakdown=body.pricing.to_domain(),
        valid_until=body.valid_until,
        vehicle_id=body.vehicle_id,
        terms=body.terms(),
    )
    quote = await service.create_quote(actor, draft)
    return quote_envelope(quote, "Quote drafted")


@router.post(
    "/auto",
    status_code=201,
    response_model=Envelope[QuoteResponse],
    summary="Draft a quote priced automatically for a matching vehicle",
)
@limiter.limit(settings.api_rate_limit)
async def generate_auto_quote(
    request: Request,
    body: AutoQuoteRequest,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote = await service.generate_auto_quote(
        actor, body.order_id, body.vehicle_id, body.terms()
    )
    return quote_envelope(quote, "Quote generated")


@router.get(
    "",
    response_model=PagedEnvelope[QuoteResponse],
    summary="List the carrier's quotes",
)
@limiter.limit(settings.api_rate_limit)
async def list_carrier_quotes(
    request: Request,
    status: Optional[list[QuoteStatus]] = Query(None),
    order_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    service: QuoteService = Depends(get_quote_service),
):
    result = await service.list_carrier_quotes(actor, status or [], order_id, page, limit)
    return PagedEnvelope[QuoteResponse](
        data=[QuoteResponse.model_validate(q) for q in result.items],
        pagination=PageMeta(**result.meta()),
    )


@router.get(
    "/{quote_id}",
    response_model=Envelope[QuoteResponse],
    summary="Get one quote",
)
@limiter.limit(settings.api_rate_limit)
async def get_quote(
    request: Request,
    quote_id: int,
    actor: Actor = Depends(get_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return quote_envelope(await service.get_quote(actor, quote_id))


@router.patch(
    "/{quote_id}",
    response_model=Envelope[QuoteResponse],
    summary="Edit a draft quote",
)
@limiter.limit(settings.api_rate_limit)
async def update_quote(
    request: Request,
    quote_id: int,
    body: QuoteUpdateRequest,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote = await service.update_quote(
        actor,
        quote_id,
        breakdown=body.pricing.to_domain() if body.pricing else None,
        valid_until=body.valid_until,
        vehicle_id=body.vehicle_id,
        terms=body.terms(),
    )
    return quote_envelope(quote, "Quote updated")


@router.delete(
    "/{quote_id}",
    response_model=Envelope[dict],
    summary="Delete a draft quote",
)
@limiter.limit(settings.api_rate_limit)
async def delete_quote(
    request: Request,
    quote_id: int,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    await service.delete_quote(actor, quote_id)
    return Envelope[dict](data={"id": quote_id}, message="Quote deleted")


@router.post(
    "/{quote_id}/send",
    response_model=Envelope[QuoteResponse],
    summary="Send a draft quote to the shipper",
)
@limiter.limit(settings.api_rate_limit)
async def send_quote(
    request: Request,
    quote_id: int,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote = await service.send_quote(actor, quote_id)
    return quote_envelope(quote, "Quote sent")


@router.post(
    "/{quote_id}/accept",
    response_model=Envelope[AcceptedQuote],
    summary="Accept a quote; the order is confirmed and competing quotes closed",
)
@limiter.limit(settings.api_rate_limit)
async def accept_quote(
    request: Request,
    quote_id: int,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote, order = await service.accept_quote(actor, quote_id)
    return Envelope[AcceptedQuote](
        data=AcceptedQuote(
            quote=QuoteResponse.model_validate(quote),
            order=OrderResponse.model_validate(order),
        ),
        message="Quote accepted",
    )


@router.post(
    "/{quote_id}/reject",
    response_model=Envelope[QuoteResponse],
    summary="Reject a quote",
)
@limiter.limit(settings.api_rate_limit)
async def reject_quote(
    request: Request,
    quote_id: int,
    body: QuoteRejectRequest,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote = await service.reject_quote(actor, quote_id, body.reason)
    return quote_envelope(quote, "Quote rejected")


@router.post(
    "/{quote_id}/revise",
    status_code=201,
    response_model=Envelope[QuoteResponse],
    summary="Replace a sent quote with a revised draft",
)
@limiter.limit(settings.api_rate_limit)
async def revise_quote(
    request: Request,
    quote_id: int,
    body: QuoteReviseRequest,
    actor: Actor = Depends(rate_limit("quote")),
    service: QuoteService = Depends(get_quote_service),
):
    quote = await service.revise_quote(
        actor,
        quote_id,
        breakdown=body.pricing.to_domain(),
        valid_until=body.valid_until,
        vehicle_id=body.vehicle_id,
        terms=body.terms(),
    )
    return quote_envelope(quote, "Quote revised")
