"""
Refund Component Tests

Refunds lock the transaction in Refunding, are bounded by the remaining
balance and settle to PartiallyRefunded, Refunded or back to the prior
status.

Usage:
    pytest tests/component/payment/test_refunds.py -v
"""
import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from core.errors import ConflictError, NotFoundError, TransientInfraError, ValidationError
from core.messages import Topics
from microservices.payment_service.factory import build_payment_service
from microservices.payment_service.models import RefundCreateRequest, RefundStatus, TransactionStatus
from microservices.payment_service.providers import MockPaymentProvider

from tests.component.mocks import BrokenRefundProvider, GatedPaymentProvider, UnreachablePaymentProvider
from tests.fixtures import make_transaction

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


@pytest_asyncio.fixture
async def captured(payment_repo):
    """Completed transaction of 100.00"""
    transaction = make_transaction(
        order_id="order_1", amount=Decimal("100.00"), status=TransactionStatus.COMPLETED,
        transaction_id="txn_captured",
    )
    return await payment_repo.create_transaction(transaction, reason="seeded")


@pytest.fixture
def service_with(payment_repo, payment_bus, settings, clock):
    def build(provider):
        return build_payment_service(payment_repo, event_bus=payment_bus, settings=settings, provider=provider, clock=clock)
    return build


def refund_of(amount, transaction_id="txn_captured"):
    return RefundCreateRequest(transaction_id=transaction_id, amount=Decimal(amount), reason="customer request")


async def status_of(service, transaction_id="txn_captured"):
    return (await service.get_payment(transaction_id)).status


class TestRefundAmounts:

    async def test_partial_then_full_refund(self, payment_service, payment_bus, captured):
        first = await payment_service.create_refund(refund_of("60.00"), requested_by="usr_support")

        assert first.status == RefundStatus.COMPLETED
        assert first.external_refund_id.startswith("mock_re_")
        assert await status_of(payment_service) == TransactionStatus.PARTIALLY_REFUNDED

        second = await payment_service.create_refund(refund_of("40.00"))

        assert second.status == RefundStatus.COMPLETED
        assert await status_of(payment_service) == TransactionStatus.REFUNDED
        published = payment_bus.published_on(Topics.PAYMENT_EVENTS, "refund_processed")
        assert [p["fully_refunded"] for p in published] == [False, True]

    async def test_refund_beyond_remaining_is_rejected(self, payment_service, payment_repo, captured):
        await payment_service.create_refund(refund_of("60.00"))

        with pytest.raises(ValidationError) as exc:
            await payment_service.create_refund(refund_of("41.00"))

        assert exc.value.details["remaining"] == "40.00"
        assert await status_of(payment_service) == TransactionStatus.PARTIALLY_REFUNDED
        assert len(await payment_service.list_refunds("txn_captured")) == 1

    async def test_refund_beyond_amount_is_rejected(self, payment_service, captured):
        with pytest.raises(ValidationError):
            await payment_service.create_refund(refund_of("100.01"))

        assert await status_of(payment_service) == TransactionStatus.COMPLETED

    async def test_fully_refunded_transaction_conflicts(self, payment_service, captured):
        await payment_service.create_refund(refund_of("100.00"))

        with pytest.raises(ConflictError):
            await payment_service.create_refund(refund_of("1.00"))

    async def test_uncaptured_payment_cannot_be_refunded(self, payment_service):
        payment = await payment_service.create_payment("order_2", "usr_1", Decimal("10.00"))

        with pytest.raises(ConflictError):
            await payment_service.create_refund(refund_of("5.00", payment.transaction_id))

    async def test_unknown_transaction_is_not_found(self, payment_service):
        with pytest.raises(NotFoundError):
            await payment_service.create_refund(refund_of("5.00", "txn_missing"))


class TestRefundLock:

    async def test_concurrent_refund_conflicts_while_refunding(self, service_with, captured):
        provider = GatedPaymentProvider()
        service = service_with(provider)

        in_flight = asyncio.create_task(service.create_refund(refund_of("30.00")))
        await asyncio.sleep(0)

        assert await status_of(service) == TransactionStatus.REFUNDING
        with pytest.raises(ConflictError):
            await service.create_refund(refund_of("30.00"))

        provider.gate.set()
        refund = await in_flight

        assert refund.status == RefundStatus.COMPLETED
        assert provider.refund_calls == 1
        assert await status_of(service) == TransactionStatus.PARTIALLY_REFUNDED

    async def test_history_records_refunding_step(self, payment_service, captured):
        await payment_service.create_refund(refund_of("25.00"))

        history = await payment_service.get_status_history("txn_captured")

        assert [(h.previous_status, h.current_status) for h in history[1:]] == [
            (TransactionStatus.COMPLETED, TransactionStatus.REFUNDING),
            (TransactionStatus.REFUNDING, TransactionStatus.PARTIALLY_REFUNDED),
        ]


class TestRefundFailure:

    async def test_rejected_refund_restores_prior_status(self, service_with, payment_bus, captured):
        service = service_with(MockPaymentProvider(reject_refunds=True))

        refund = await service.create_refund(refund_of("20.00"))

        assert refund.status == RefundStatus.FAILED
        assert refund.failure_reason == "refund_rejected"
        assert await status_of(service) == TransactionStatus.COMPLETED
        published = payment_bus.published_on(Topics.PAYMENT_EVENTS, "refund_processed")
        assert published[0]["status"] == "failed"

    async def test_rejection_after_partial_returns_to_partially_refunded(self, service_with, payment_repo, captured):
        await service_with(MockPaymentProvider()).create_refund(refund_of("20.00"))

        rejecting = service_with(MockPaymentProvider(reject_refunds=True))
        await rejecting.create_refund(refund_of("20.00"))

        assert await status_of(rejecting) == TransactionStatus.PARTIALLY_REFUNDED

    async def test_failed_refund_does_not_count_towards_total(self, service_with, captured):
        await service_with(MockPaymentProvider(reject_refunds=True)).create_refund(refund_of("100.00"))

        refund = await service_with(MockPaymentProvider()).create_refund(refund_of("100.00"))

        assert refund.status == RefundStatus.COMPLETED

    async def test_unreachable_provider_settles_refund_as_failed(self, service_with, captured):
        service = service_with(UnreachablePaymentProvider())

        with pytest.raises(TransientInfraError):
            await service.create_refund(refund_of("10.00"))

        refunds = await service.list_refunds("txn_captured")
        assert refunds[0].status == RefundStatus.FAILED
        assert await status_of(service) == TransactionStatus.COMPLETED

    async def test_provider_bug_releases_the_refund_lock(self, service_with, captured):
        service = service_with(BrokenRefundProvider())

        with pytest.raises(RuntimeError):
            await service.create_refund(refund_of("10.00"))

        refunds = await service.list_refunds("txn_captured")
        assert refunds[0].status == RefundStatus.FAILED
        assert refunds[0].failure_reason.startswith("RuntimeError")
        assert await status_of(service) == TransactionStatus.COMPLETED
        retried = await service_with(MockPaymentProvider()).create_refund(refund_of("10.00"))
        assert retried.status == RefundStatus.COMPLETED


class TestDeferredSettlement:

    async def test_deferred_refund_holds_lock_until_processed(self, service_with, captured):
        service = service_with(MockPaymentProvider(defer_refunds=True))

        pending = await service.create_refund(refund_of("50.00"))

        assert pending.status == RefundStatus.PENDING
        assert await status_of(service) == TransactionStatus.REFUNDING

        settled = await service.process_refund(pending.refund_id, success=True, external_refund_id="re_ext")

        assert settled.status == RefundStatus.COMPLETED
        assert settled.external_refund_id == "re_ext"
        assert await status_of(service) == TransactionStatus.PARTIALLY_REFUNDED

    async def test_settled_refund_cannot_be_processed_again(self, service_with, captured):
        service = service_with(MockPaymentProvider(defer_refunds=True))
        pending = await service.create_refund(refund_of("50.00"))
        await service.process_refund(pending.refund_id, success=False, failure_reason="expired card")

        with pytest.raises(ConflictError):
            await service.process_refund(pending.refund_id, success=True)

        assert await status_of(service) == TransactionStatus.COMPLETED

    async def test_unknown_refund_is_not_found(self, payment_service):
        with pytest.raises(NotFoundError):
            await payment_service.process_refund("ref_missing", success=True)
