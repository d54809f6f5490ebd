"""
Payment providers.

`StripePaymentProvider` is used when a Stripe secret key is configured;
`MockPaymentProvider` otherwise (local runs and tests). A provider returns a
ProviderResult for business outcomes (declined, rejected) and raises
TransientInfraError when the provider cannot be reached.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import stripe

from core.errors import TransientInfraError

from .models import PaymentTransaction, Refund

logger = logging.getLogger(__name__)


@dataclass
class ProviderResult:
    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None
    # Provider accepted the request but settles later (webhook / process_refund)
    pending: bool = False


class PaymentProvider(Protocol):
    name: str

    async def capture(self, transaction: PaymentTransaction) -> ProviderResult:
        ...

    async def refund(self, transaction: PaymentTransaction, refund: Refund) -> ProviderResult:
        ...


class MockPaymentProvider:
    """Deterministic in-process provider"""

    name = "mock"

    def __init__(self, decline_captures: bool = False, reject_refunds: bool = False, defer_refunds: bool = False):
        self.decline_captures = decline_captures
        self.reject_refunds = reject_refunds
        self.defer_refunds = defer_refunds

    async def capture(self, transaction: PaymentTransaction) -> ProviderResult:
        if self.decline_captures:
            return ProviderResult(success=False, error="card_declined")
        return ProviderResult(success=True, reference=f"mock_pi_{uuid.uuid4().hex[:12]}")

    async def refund(self, transaction: PaymentTransaction, refund: Refund) -> ProviderResult:
        if self.reject_refunds:
            return ProviderResult(success=False, error="refund_rejected")
        if self.defer_refunds:
            return ProviderResult(success=True, pending=True)
        return ProviderResult(success=True, reference=f"mock_re_{uuid.uuid4().hex[:12]}")


def _minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripePaymentProvider:
    """Stripe PaymentIntent capture and Refund API"""

    name = "stripe"

    def __init__(self, secret_key: str):
        stripe.api_key = secret_key
        self.is_test_mode = secret_key.startswith("sk_test_")
        logger.info(f"Stripe provider initialized ({'test' if self.is_test_mode else 'live'} mode)")

    async def capture(self, transaction: PaymentTransaction) -> ProviderResult:
        if not transaction.transaction_reference:
            return ProviderResult(success=False, error="missing payment intent reference")
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.capture, transaction.transaction_reference
            )
        except stripe.APIConnectionError as e:
            raise TransientInfraError(f"Stripe unreachable: {e}")
        except stripe.StripeError as e:
            logger.warning(f"Stripe capture failed for {transaction.transaction_id}: {e}")
            return ProviderResult(success=False, error=getattr(e, "user_message", None) or str(e))
        if intent.status != "succeeded":
            return ProviderResult(success=False, reference=intent.id, error=f"intent status {intent.status}")
        return ProviderResult(success=True, reference=intent.id)

    async def refund(self, transaction: PaymentTransaction, refund: Refund) -> ProviderResult:
        if not transaction.transaction_reference:
            return ProviderResult(success=False, error="missing payment intent reference")
        try:
            # Stripe only accepts duplicate, fraudulent, requested_by_customer
            stripe_refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=transaction.transaction_reference,
                amount=_minor_units(refund.amount),
                reason="requested_by_customer",
                metadata={"refund_id": refund.refund_id, "order_id": transaction.order_id},
            )
        except stripe.APIConnectionError as e:
            raise TransientInfraError(f"Stripe unreachable: {e}")
        except stripe.StripeError as e:
            logger.warning(f"Stripe refund failed for {refund.refund_id}: {e}")
            return ProviderResult(success=False, error=str(e))

        if stripe_refund.status == "succeeded":
            return ProviderResult(success=True, reference=stripe_refund.id)
        if stripe_refund.status == "pending":
            return ProviderResult(success=True, reference=stripe_refund.id, pending=True)
        return ProviderResult(success=False, reference=stripe_refund.id, error=f"refund status {stripe_refund.status}")


def create_provider(stripe_secret_key: Optional[str] = None) -> PaymentProvider:
    if stripe_secret_key:
        return StripePaymentProvider(stripe_secret_key)
    logger.info("No Stripe key configured, using mock payment provider")
    return MockPaymentProvider()
