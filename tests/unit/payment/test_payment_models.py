"""
Unit Tests for payment models

Usage:
    pytest tests/unit/payment/test_payment_models.py -v
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from microservices.payment_service.models import (
    OPEN_STATUSES, REFUNDABLE_STATUSES, PaymentCreateRequest, PaymentFailRequest, PaymentTransaction,
    RefundCreateRequest, RefundStatus, TransactionStatus,
)


class TestStatusGroups:

    def test_refunds_start_from_captured_states(self):
        assert set(REFUNDABLE_STATUSES) == {TransactionStatus.COMPLETED, TransactionStatus.PARTIALLY_REFUNDED}

    def test_refunding_is_neither_open_nor_refundable(self):
        assert TransactionStatus.REFUNDING not in OPEN_STATUSES
        assert TransactionStatus.REFUNDING not in REFUNDABLE_STATUSES

    def test_refund_statuses(self):
        assert [s.value for s in RefundStatus] == ["pending", "completed", "failed"]


class TestAmounts:

    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_payment_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError):
            PaymentCreateRequest(order_id="order_1", amount=Decimal(amount))

    def test_refund_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            RefundCreateRequest(transaction_id="txn_1", amount=Decimal("0"))

    def test_amount_keeps_precision(self):
        payment = PaymentTransaction(transaction_id="txn_1", order_id="order_1", user_id="usr_1", amount="10.10")

        assert payment.amount == Decimal("10.10")
        assert payment.model_dump(mode="json")["amount"] == "10.10"
        assert payment.status == TransactionStatus.PENDING

    def test_fail_request_needs_reason(self):
        with pytest.raises(ValidationError):
            PaymentFailRequest(reason="")
