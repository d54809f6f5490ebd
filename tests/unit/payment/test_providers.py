"""
Unit Tests for payment providers

Stripe calls are patched; no network access.

Usage:
    pytest tests/unit/payment/test_providers.py -v
"""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from core.errors import TransientInfraError
from microservices.payment_service.models import PaymentTransaction, Refund
from microservices.payment_service.providers import (
    MockPaymentProvider, StripePaymentProvider, _minor_units, create_provider,
)


def transaction(reference="pi_123"):
    return PaymentTransaction(
        transaction_id="txn_1", order_id="order_1", user_id="usr_1",
        amount=Decimal("19.99"), provider="stripe", transaction_reference=reference,
    )


def refund(amount="5.50"):
    return Refund(refund_id="ref_1", transaction_id="txn_1", amount=Decimal(amount))


class TestProviderSelection:

    def test_mock_without_key(self):
        assert isinstance(create_provider(None), MockPaymentProvider)
        assert isinstance(create_provider(""), MockPaymentProvider)

    def test_stripe_with_key(self):
        provider = create_provider("sk_test_abc")

        assert isinstance(provider, StripePaymentProvider)
        assert provider.is_test_mode

    def test_minor_units(self):
        assert _minor_units(Decimal("19.99")) == 1999
        assert _minor_units(Decimal("5")) == 500


@pytest.mark.asyncio
class TestMockProvider:

    async def test_capture_and_refund(self):
        provider = MockPaymentProvider()

        captured = await provider.capture(transaction())
        refunded = await provider.refund(transaction(), refund())

        assert captured.success and captured.reference.startswith("mock_pi_")
        assert refunded.success and refunded.reference.startswith("mock_re_")

    async def test_declines_and_rejections(self):
        provider = MockPaymentProvider(decline_captures=True, reject_refunds=True)

        assert (await provider.capture(transaction())).error == "card_declined"
        assert (await provider.refund(transaction(), refund())).error == "refund_rejected"

    async def test_deferred_refund_is_pending(self):
        result = await MockPaymentProvider(defer_refunds=True).refund(transaction(), refund())

        assert result.success and result.pending


@pytest.mark.asyncio
class TestStripeProvider:

    @pytest.fixture
    def provider(self):
        return StripePaymentProvider("sk_test_abc")

    async def test_capture_succeeded(self, provider):
        intent = SimpleNamespace(id="pi_123", status="succeeded")
        with patch.object(stripe.PaymentIntent, "capture", return_value=intent) as capture:
            result = await provider.capture(transaction())

        capture.assert_called_once_with("pi_123")
        assert result.success
        assert result.reference == "pi_123"

    async def test_capture_needs_intent_reference(self, provider):
        result = await provider.capture(transaction(reference=None))

        assert not result.success

    async def test_capture_not_succeeded(self, provider):
        intent = SimpleNamespace(id="pi_123", status="requires_payment_method")
        with patch.object(stripe.PaymentIntent, "capture", return_value=intent):
            result = await provider.capture(transaction())

        assert not result.success
        assert result.error == "intent status requires_payment_method"

    async def test_card_error_is_a_decline(self, provider):
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch.object(stripe.PaymentIntent, "capture", side_effect=error):
            result = await provider.capture(transaction())

        assert not result.success
        assert "declined" in result.error

    async def test_connection_error_is_transient(self, provider):
        with patch.object(stripe.PaymentIntent, "capture", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(TransientInfraError):
                await provider.capture(transaction())

    async def test_refund_amount_in_minor_units(self, provider):
        stripe_refund = SimpleNamespace(id="re_1", status="succeeded")
        with patch.object(stripe.Refund, "create", return_value=stripe_refund) as create:
            result = await provider.refund(transaction(), refund("5.50"))

        assert create.call_args.kwargs["amount"] == 550
        assert create.call_args.kwargs["payment_intent"] == "pi_123"
        assert result.success and not result.pending

    async def test_pending_refund(self, provider):
        stripe_refund = SimpleNamespace(id="re_1", status="pending")
        with patch.object(stripe.Refund, "create", return_value=stripe_refund):
            result = await provider.refund(transaction(), refund())

        assert result.success and result.pending
        assert result.reference == "re_1"

    async def test_failed_refund(self, provider):
        stripe_refund = SimpleNamespace(id="re_1", status="failed")
        with patch.object(stripe.Refund, "create", return_value=stripe_refund):
            result = await provider.refund(transaction(), refund())

        assert not result.success
