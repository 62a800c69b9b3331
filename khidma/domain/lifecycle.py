"""
Order and quote state machines.

Both entities move only through the tables in ``enums``:
``ORDER_TRANSITIONS`` and ``QUOTE_TRANSITIONS``.  The functions here are
the single place those tables are consulted, so a guard can never be
bypassed by a handler that forgot to check.  Everything is pure; the
services apply the result with a compare-and-swap write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .enums import (
    ORDER_TRANSITIONS,
    QUOTE_TRANSITIONS,
    OrderAction,
    OrderStatus,
    QuoteAction,
    QuoteStatus,
)
from .errors import ExpiredError, InvalidTransition, ValidationError

MIN_CANCELLATION_REASON = 10


def order_transition(
    status: OrderStatus, action: OrderAction, reason: str = ""
) -> OrderStatus:
    """Return the status reached by applying *action*, or raise."""
    status, action = OrderStatus(status), OrderAction(action)
    try:
        return ORDER_TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidTransition("order", status, action, reason) from None


def quote_transition(
    status: QuoteStatus, action: QuoteAction, reason: str = ""
) -> QuoteStatus:
    status, action = QuoteStatus(status), QuoteAction(action)
    try:
        return QUOTE_TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidTransition("quote", status, action, reason) from None


def can_order_transition(status: OrderStatus, action: OrderAction) -> bool:
    return (OrderStatus(status), OrderAction(action)) in ORDER_TRANSITIONS


def allowed_order_actions(status: OrderStatus) -> list[OrderAction]:
    return [a for a in OrderAction if (OrderStatus(status), a) in ORDER_TRANSITIONS]


# ── Quote validity ────────────────────────────────────────────────────


def is_quote_expired(valid_until: datetime, now: datetime) -> bool:
    return now >= valid_until


def effective_quote_status(
    status: QuoteStatus, valid_until: datetime, now: datetime
) -> QuoteStatus:
    """Status as seen by readers: a sent quote past its validity is EXPIRE
    even before the sweep has persisted it."""
    status = QuoteStatus(status)
    if status == QuoteStatus.ENVOYE and is_quote_expired(valid_until, now):
        return QuoteStatus.EXPIRE
    return status


def ensure_not_expired(quote_number: str, valid_until: datetime, now: datetime) -> None:
    if is_quote_expired(valid_until, now):
        raise ExpiredError(
            f"Quote {quote_number} expired at {valid_until.isoformat()}",
            {"quote_number": quote_number, "valid_until": valid_until.isoformat()},
        )


def ensure_valid_until_in_future(valid_until: datetime, now: datetime) -> None:
    if valid_until <= now:
        raise ExpiredError(
            "valid_until must be in the future",
            {"valid_until": valid_until.isoformat()},
        )


# ── Order guards ──────────────────────────────────────────────────────


def ensure_cancellation_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if len(reason) < MIN_CANCELLATION_REASON:
        raise ValidationError(
            f"Cancellation reason must be at least {MIN_CANCELLATION_REASON} characters",
            {"field": "reason", "min_length": MIN_CANCELLATION_REASON},
        )
    return reason
