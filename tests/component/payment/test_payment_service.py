"""
Payment Service Component Tests

Transaction state machine, status history and payment_events through the
outbox.

Usage:
    pytest tests/component/payment/test_payment_service.py -v
"""
from decimal import Decimal

import pytest

from core.errors import ConflictError, NotFoundError, TransientInfraError
from core.event_bus import InMemoryEventBus
from core.messages import OrderCancelledMessage, Topics
from microservices.payment_service.events import get_event_handlers
from microservices.payment_service.factory import build_payment_service
from microservices.payment_service.models import TransactionStatus
from microservices.payment_service.providers import MockPaymentProvider

from tests.component.mocks import UnreachablePaymentProvider

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


@pytest.fixture
def service_with(payment_repo, payment_bus, settings, clock):
    """Build a PaymentService around the shared repository with another provider"""
    def build(provider, event_bus=payment_bus):
        return build_payment_service(payment_repo, event_bus=event_bus, settings=settings, provider=provider, clock=clock)
    return build


async def new_payment(service, amount="100.00", order_id="order_1"):
    return await service.create_payment(order_id, "usr_1", Decimal(amount))


class TestCreatePayment:

    async def test_new_payment_is_pending_with_history(self, payment_service):
        payment = await new_payment(payment_service)

        assert payment.status == TransactionStatus.PENDING
        assert payment.provider == "mock"
        assert payment.currency == "USD"
        history = await payment_service.get_status_history(payment.transaction_id)
        assert [(h.previous_status, h.current_status) for h in history] == [(None, TransactionStatus.PENDING)]

    async def test_unknown_transaction_is_not_found(self, payment_service):
        with pytest.raises(NotFoundError):
            await payment_service.get_payment("txn_missing")


class TestCapture:

    async def test_capture_completes_and_publishes(self, payment_service, payment_bus, payment_repo, clock):
        payment = await new_payment(payment_service)

        completed = await payment_service.capture_payment(payment.transaction_id)

        assert completed.status == TransactionStatus.COMPLETED
        assert completed.paid_at == clock.now
        assert completed.transaction_reference.startswith("mock_pi_")
        published = payment_bus.published_on(Topics.PAYMENT_EVENTS, "payment_completed")
        assert len(published) == 1
        assert published[0]["order_id"] == "order_1"
        assert published[0]["transaction_id"] == payment.transaction_id
        assert payment_repo.outbox.pending() == []

    async def test_authorized_payment_can_be_captured(self, payment_service):
        payment = await new_payment(payment_service)
        authorized = await payment_service.authorize_payment(payment.transaction_id, "pi_123")

        completed = await payment_service.capture_payment(payment.transaction_id)

        assert authorized.status == TransactionStatus.AUTHORIZED
        assert completed.status == TransactionStatus.COMPLETED
        history = await payment_service.get_status_history(payment.transaction_id)
        assert [h.current_status for h in history] == [
            TransactionStatus.PENDING, TransactionStatus.AUTHORIZED, TransactionStatus.COMPLETED,
        ]

    async def test_second_capture_conflicts(self, payment_service, payment_bus):
        payment = await new_payment(payment_service)
        await payment_service.capture_payment(payment.transaction_id)

        with pytest.raises(ConflictError):
            await payment_service.capture_payment(payment.transaction_id)

        assert len(payment_bus.published_on(Topics.PAYMENT_EVENTS, "payment_completed")) == 1

    async def test_declined_capture_fails_payment(self, service_with, payment_bus):
        service = service_with(MockPaymentProvider(decline_captures=True))
        payment = await new_payment(service)

        failed = await service.capture_payment(payment.transaction_id)

        assert failed.status == TransactionStatus.FAILED
        assert failed.error_message == "card_declined"
        published = payment_bus.published_on(Topics.PAYMENT_EVENTS, "payment_failed")
        assert published[0]["can_retry"] is True
        assert published[0]["failure_reason"] == "card_declined"

    async def test_unreachable_provider_changes_nothing(self, service_with, payment_bus):
        service = service_with(UnreachablePaymentProvider())
        payment = await new_payment(service)

        with pytest.raises(TransientInfraError):
            await service.capture_payment(payment.transaction_id)

        assert (await service.get_payment(payment.transaction_id)).status == TransactionStatus.PENDING
        assert payment_bus.published == []


class TestOtherTransitions:

    async def test_completed_payment_cannot_fail(self, payment_service):
        payment = await new_payment(payment_service)
        await payment_service.capture_payment(payment.transaction_id)

        with pytest.raises(ConflictError):
            await payment_service.fail_payment(payment.transaction_id, "late decline")

    async def test_cancel_open_payment(self, payment_service, payment_bus):
        payment = await new_payment(payment_service)

        cancelled = await payment_service.cancel_payment(payment.transaction_id, "order abandoned")

        assert cancelled.status == TransactionStatus.CANCELLED
        assert payment_bus.published == []
        with pytest.raises(ConflictError):
            await payment_service.capture_payment(payment.transaction_id)

    async def test_cancel_open_payments_skips_captured(self, payment_service):
        captured = await new_payment(payment_service)
        await payment_service.capture_payment(captured.transaction_id)
        open_payment = await new_payment(payment_service)

        count = await payment_service.cancel_open_payments("order_1", "order cancelled")

        assert count == 1
        assert (await payment_service.get_payment(open_payment.transaction_id)).status == TransactionStatus.CANCELLED
        assert (await payment_service.get_payment(captured.transaction_id)).status == TransactionStatus.COMPLETED


class TestOutboxDelivery:

    async def test_failed_publish_stays_pending_until_next_pass(self, service_with, payment_repo):
        class DownBus(InMemoryEventBus):
            available = False

            async def publish(self, message, topic):
                if not self.available:
                    raise TransientInfraError("bus down")
                await super().publish(message, topic)

        bus = DownBus("payment_service")
        service = service_with(MockPaymentProvider(), event_bus=bus)
        service.outbox.publish_attempts = 1
        payment = await new_payment(service)

        completed = await service.capture_payment(payment.transaction_id)

        assert completed.status == TransactionStatus.COMPLETED
        assert len(payment_repo.outbox.pending()) == 1
        assert payment_repo.outbox.pending()[0].attempts == 1

        bus.available = True
        assert await service.outbox.dispatch_pending() == 1
        assert bus.published_on(Topics.PAYMENT_EVENTS, "payment_completed")
        assert payment_repo.outbox.pending() == []


class TestOrderCancelledHandler:

    async def test_cancelled_order_cancels_uncaptured_payment(self, payment_service, payment_bus):
        for (topic, model), handler in get_event_handlers(payment_service).items():
            payment_bus.subscribe(topic, model, handler)
        payment = await new_payment(payment_service)

        message = OrderCancelledMessage(order_id="order_1", user_id="usr_1", reason="customer request")
        await payment_bus.deliver_raw(Topics.ORDER_EVENTS, message.to_envelope())
        await payment_bus.drain()

        assert (await payment_service.get_payment(payment.transaction_id)).status == TransactionStatus.CANCELLED
