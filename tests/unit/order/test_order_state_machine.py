"""
Unit Tests for the order status state machine

    pending         -> paid | payment_failed | cancelled
    payment_failed  -> paid | cancelled
    paid            -> processing | refunded
    processing      -> shipped | refunded
    shipped         -> delivered | refunded

Usage:
    pytest tests/unit/order/test_order_state_machine.py -v
"""
import pytest
from pydantic import ValidationError

from core.errors import ConflictError
from microservices.order_service.models import OrderCancelRequest, OrderStatus, OrderStatusUpdateRequest
from microservices.order_service.state_machine import (
    PAID_STATUSES, TERMINAL_STATUSES, TRANSITIONS, can_transition, check_transition, sources_for,
)

S = OrderStatus


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.PAID),
        (S.PENDING, S.PAYMENT_FAILED),
        (S.PENDING, S.CANCELLED),
        (S.PAYMENT_FAILED, S.PAID),
        (S.PAYMENT_FAILED, S.CANCELLED),
        (S.PAID, S.PROCESSING),
        (S.PAID, S.REFUNDED),
        (S.PROCESSING, S.SHIPPED),
        (S.SHIPPED, S.DELIVERED),
        (S.SHIPPED, S.REFUNDED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.PAID, S.CANCELLED),
        (S.PAID, S.PAYMENT_FAILED),
        (S.PENDING, S.PROCESSING),
        (S.PROCESSING, S.DELIVERED),
        (S.PAYMENT_FAILED, S.PAYMENT_FAILED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(OrderStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.DELIVERED, S.CANCELLED, S.REFUNDED}

    def test_paid_statuses_exclude_unpaid(self):
        assert S.PENDING not in PAID_STATUSES
        assert S.PAYMENT_FAILED not in PAID_STATUSES
        assert S.CANCELLED not in PAID_STATUSES

    def test_sources_for_refund(self):
        assert set(sources_for(S.REFUNDED)) == {S.PAID, S.PROCESSING, S.SHIPPED}


class TestCheckTransition:

    def test_allowed_passes(self):
        check_transition("order_1", S.PENDING, S.PAID)

    def test_conflict_details(self):
        with pytest.raises(ConflictError) as exc:
            check_transition("order_1", S.PAID, S.CANCELLED)

        assert exc.value.details == {"status": "paid", "target": "cancelled"}
        assert "terminal" not in exc.value.message

    def test_terminal_is_named(self):
        with pytest.raises(ConflictError) as exc:
            check_transition("order_1", S.DELIVERED, S.REFUNDED)

        assert "(terminal)" in exc.value.message


class TestRequestModels:

    @pytest.mark.parametrize("status", ["processing", "shipped", "delivered"])
    def test_fulfilment_updates_accepted(self, status):
        assert OrderStatusUpdateRequest(status=status).status == OrderStatus(status)

    @pytest.mark.parametrize("status", ["paid", "cancelled", "refunded", "pending"])
    def test_saga_statuses_rejected(self, status):
        with pytest.raises(ValidationError):
            OrderStatusUpdateRequest(status=status)

    def test_cancel_needs_reason(self):
        with pytest.raises(ValidationError):
            OrderCancelRequest(reason="")
