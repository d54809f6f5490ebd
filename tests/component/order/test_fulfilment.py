"""
Order Fulfilment and Cancellation Component Tests

Usage:
    pytest tests/component/order/test_fulfilment.py -v
"""
import pytest

from core.errors import ConflictError, NotFoundError, ValidationError
from core.messages import Topics
from microservices.order_service.models import OrderStatus

from tests.component.order.conftest import BUYER
from tests.fixtures import make_payment_completed, make_payment_failed

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


async def pay(order_service, order):
    return await order_service.handle_payment_completed(make_payment_completed(order.order_id))


class TestCancelOrder:

    async def test_cancel_pending_order_emits_items(self, order_service, order_bus, order):
        cancelled = await order_service.cancel_order(order.order_id, "changed my mind", changed_by=BUYER)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancellation_reason == "changed my mind"
        published = order_bus.published_on(Topics.ORDER_EVENTS, "order_cancelled")
        assert len(published) == 1
        assert published[0]["reason"] == "changed my mind"
        assert [(i["product_id"], i["quantity"]) for i in published[0]["items"]] == [("prod_widget", 2)]

    async def test_cancel_after_failed_payment(self, order_service, order):
        await order_service.handle_payment_failed(make_payment_failed(order.order_id))

        cancelled = await order_service.cancel_order(order.order_id, "gave up")

        assert cancelled.status == OrderStatus.CANCELLED

    async def test_paid_order_cannot_be_cancelled(self, order_service, order_bus, order):
        await pay(order_service, order)

        with pytest.raises(ConflictError) as exc:
            await order_service.cancel_order(order.order_id, "too late")

        assert exc.value.details["status"] == "paid"
        assert order_bus.published_on(Topics.ORDER_EVENTS, "order_cancelled") == []

    async def test_second_cancel_conflicts(self, order_service, order):
        await order_service.cancel_order(order.order_id, "changed my mind")

        with pytest.raises(ConflictError) as exc:
            await order_service.cancel_order(order.order_id, "again")

        assert "terminal" in exc.value.message

    async def test_unknown_order_is_not_found(self, order_service):
        with pytest.raises(NotFoundError):
            await order_service.cancel_order("order_missing", "nope")


class TestUpdateStatus:

    async def test_paid_order_moves_through_fulfilment(self, order_service, order):
        await pay(order_service, order)

        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            updated = await order_service.update_status(order.order_id, status, changed_by="usr_ops")
            assert updated.status == status

        history = await order_service.get_status_history(order.order_id)
        assert [h.status for h in history] == [
            OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PROCESSING,
            OrderStatus.SHIPPED, OrderStatus.DELIVERED,
        ]

    async def test_unpaid_order_cannot_be_processed(self, order_service, order):
        with pytest.raises(ConflictError):
            await order_service.update_status(order.order_id, OrderStatus.PROCESSING)

    async def test_steps_cannot_be_skipped(self, order_service, order):
        await pay(order_service, order)

        with pytest.raises(ConflictError):
            await order_service.update_status(order.order_id, OrderStatus.DELIVERED)

    @pytest.mark.parametrize("status", [OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REFUNDED])
    async def test_saga_statuses_cannot_be_set_directly(self, order_service, order, status):
        with pytest.raises(ValidationError):
            await order_service.update_status(order.order_id, status)


class TestQueries:

    async def test_orders_listed_for_owner(self, order_service, order):
        orders = await order_service.list_user_orders(BUYER)

        assert [o.order_id for o in orders] == [order.order_id]
        assert await order_service.list_user_orders("usr_other") == []

    async def test_order_events_show_dispatch_state(self, order_service, order):
        await pay(order_service, order)

        events = await order_service.get_order_events(order.order_id)

        assert [e.event_type for e in events] == ["order_created", "order_paid"]
        assert all(e.processed for e in events)
