"""Unit tests for the order and quote state machines."""

from datetime import datetime, timedelta, timezone

import pytest

from khidma.domain.enums import (
    ORDER_TERMINAL,
    ORDER_TRANSITIONS,
    QUOTE_ACTIVE,
    QUOTE_EXPIRABLE,
    QUOTE_SUPERSEDABLE,
    OrderAction,
    OrderStatus,
    QuoteAction,
    QuoteStatus,
)
from khidma.domain.errors import ExpiredError, InvalidTransition, ValidationError
from khidma.domain.lifecycle import (
    allowed_order_actions,
    can_order_transition,
    effective_quote_status,
    ensure_cancellation_reason,
    ensure_not_expired,
    ensure_valid_until_in_future,
    is_quote_expired,
    order_transition,
    quote_transition,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class TestOrderStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    def test_first_quote_sent(self):
        assert order_transition(OrderStatus.DEMANDE, OrderAction.SUBMIT_QUOTE) == OrderStatus.DEVIS_ENVOYE

    def test_quote_accepted_confirms(self):
        assert order_transition(OrderStatus.DEVIS_ENVOYE, OrderAction.ACCEPT_QUOTE) == OrderStatus.CONFIRME

    def test_confirmed_to_in_transit(self):
        assert order_transition(OrderStatus.CONFIRME, OrderAction.START) == OrderStatus.EN_TRANSIT

    def test_in_transit_to_delivered(self):
        assert order_transition(OrderStatus.EN_TRANSIT, OrderAction.DELIVER) == OrderStatus.LIVRE

    def test_delivered_to_finished(self):
        assert order_transition(OrderStatus.LIVRE, OrderAction.FINALIZE) == OrderStatus.TERMINE

    @pytest.mark.parametrize(
        "status", [s for s in OrderStatus if s not in ORDER_TERMINAL]
    )
    def test_cancel_from_any_open_status(self, status):
        assert order_transition(status, OrderAction.CANCEL) == OrderStatus.ANNULE

    # ── Invalid transitions ───────────────────────────────────────

    @pytest.mark.parametrize("status", sorted(ORDER_TERMINAL, key=lambda s: s.value))
    def test_terminal_statuses_allow_nothing(self, status):
        assert allowed_order_actions(status) == []
        with pytest.raises(InvalidTransition):
            order_transition(status, OrderAction.CANCEL)

    def test_cannot_skip_to_delivered(self):
        with pytest.raises(InvalidTransition) as exc:
            order_transition(OrderStatus.CONFIRME, OrderAction.DELIVER)
        assert exc.value.details == {
            "entity": "order", "current": "CONFIRME", "action": "DELIVER",
        }
        assert exc.value.status_code == 409

    def test_cannot_accept_without_sent_quote(self):
        assert not can_order_transition(OrderStatus.DEMANDE, OrderAction.ACCEPT_QUOTE)

    def test_second_quote_does_not_move_order(self):
        assert not can_order_transition(OrderStatus.DEVIS_ENVOYE, OrderAction.SUBMIT_QUOTE)

    def test_table_is_exact(self):
        forward = {k: v for k, v in ORDER_TRANSITIONS.items() if k[1] != OrderAction.CANCEL}
        assert forward == {
            (OrderStatus.DEMANDE, OrderAction.SUBMIT_QUOTE): OrderStatus.DEVIS_ENVOYE,
            (OrderStatus.DEVIS_ENVOYE, OrderAction.ACCEPT_QUOTE): OrderStatus.CONFIRME,
            (OrderStatus.CONFIRME, OrderAction.START): OrderStatus.EN_TRANSIT,
            (OrderStatus.EN_TRANSIT, OrderAction.DELIVER): OrderStatus.LIVRE,
            (OrderStatus.LIVRE, OrderAction.FINALIZE): OrderStatus.TERMINE,
        }

    def test_accepts_raw_values(self):
        assert order_transition("CONFIRME", "START") == OrderStatus.EN_TRANSIT


class TestQuoteStateMachine:
    def test_send(self):
        assert quote_transition(QuoteStatus.BROUILLON, QuoteAction.SEND) == QuoteStatus.ENVOYE

    @pytest.mark.parametrize(
        "action, target",
        [
            (QuoteAction.ACCEPT, QuoteStatus.ACCEPTE),
            (QuoteAction.REJECT, QuoteStatus.REFUSE),
            (QuoteAction.EXPIRE, QuoteStatus.EXPIRE),
            (QuoteAction.SUPERSEDE, QuoteStatus.REFUSE),
            (QuoteAction.REVISE, QuoteStatus.MODIFIE),
        ],
    )
    def test_sent_quote_outcomes(self, action, target):
        assert quote_transition(QuoteStatus.ENVOYE, action) == target

    def test_draft_superseded_by_accepted_sibling(self):
        assert quote_transition(QuoteStatus.BROUILLON, QuoteAction.SUPERSEDE) == QuoteStatus.REFUSE

    def test_draft_cannot_be_accepted(self):
        with pytest.raises(InvalidTransition):
            quote_transition(QuoteStatus.BROUILLON, QuoteAction.ACCEPT)

    def test_draft_cannot_expire(self):
        with pytest.raises(InvalidTransition):
            quote_transition(QuoteStatus.BROUILLON, QuoteAction.EXPIRE)

    def test_bulk_close_sets_follow_the_table(self):
        assert QUOTE_SUPERSEDABLE == QUOTE_ACTIVE
        assert QUOTE_EXPIRABLE == {QuoteStatus.ENVOYE}

    @pytest.mark.parametrize(
        "status",
        [QuoteStatus.ACCEPTE, QuoteStatus.REFUSE, QuoteStatus.EXPIRE, QuoteStatus.MODIFIE],
    )
    @pytest.mark.parametrize("action", list(QuoteAction))
    def test_closed_quotes_are_final(self, status, action):
        with pytest.raises(InvalidTransition):
            quote_transition(status, action)


class TestQuoteValidity:
    def test_expired_at_the_boundary(self):
        assert is_quote_expired(NOW, NOW)
        assert not is_quote_expired(NOW + timedelta(seconds=1), NOW)

    def test_sent_quote_reads_as_expired(self):
        assert effective_quote_status(QuoteStatus.ENVOYE, NOW, NOW) == QuoteStatus.EXPIRE

    def test_other_statuses_unaffected(self):
        past = NOW - timedelta(days=1)
        assert effective_quote_status(QuoteStatus.BROUILLON, past, NOW) == QuoteStatus.BROUILLON
        assert effective_quote_status(QuoteStatus.ACCEPTE, past, NOW) == QuoteStatus.ACCEPTE

    def test_ensure_not_expired(self):
        ensure_not_expired("DV2603020001", NOW + timedelta(hours=1), NOW)
        with pytest.raises(ExpiredError) as exc:
            ensure_not_expired("DV2603020001", NOW, NOW)
        assert exc.value.status_code == 410

    def test_valid_until_must_be_future(self):
        with pytest.raises(ExpiredError):
            ensure_valid_until_in_future(NOW - timedelta(minutes=1), NOW)


class TestCancellationReason:
    def test_trimmed_reason(self):
        assert ensure_cancellation_reason("  Camion en panne  ") == "Camion en panne"

    @pytest.mark.parametrize("reason", [None, "", "trop tard", "   court   "])
    def test_too_short(self, reason):
        with pytest.raises(ValidationError):
            ensure_cancellation_reason(reason)
