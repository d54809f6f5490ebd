"""
Order Service Event Publishers

Order events go through the outbox: each builder returns the OutboxEntry
written in the same transaction as the order change. The dispatcher
publishes it after commit.
"""

from typing import Optional

from core.messages import (
    OrderCancelledMessage, OrderCreatedMessage, OrderItemPayload, OrderPaidMessage,
)
from core.outbox import OutboxEntry

from ..models import Order
from .models import ORDER_TOPIC

SENDER = "order_service"


def _items(order: Order):
    return [
        OrderItemPayload(
            product_id=i.product_id,
            variant_id=i.variant_id,
            product_name=i.product_name,
            quantity=i.quantity,
            unit_price=i.unit_price,
        )
        for i in order.items
    ]


def order_created_event(order: Order) -> OutboxEntry:
    message = OrderCreatedMessage(
        order_id=order.order_id,
        user_id=order.user_id,
        total_amount=order.total_amount,
        currency=order.currency,
        items=_items(order),
        sender=SENDER,
        correlation_id=order.order_id,
    )
    return OutboxEntry.for_message(message, ORDER_TOPIC, aggregate_id=order.order_id)


def order_paid_event(order: Order, transaction_id: Optional[str] = None) -> OutboxEntry:
    message = OrderPaidMessage(
        order_id=order.order_id,
        user_id=order.user_id,
        transaction_id=transaction_id or order.payment_id,
        sender=SENDER,
        correlation_id=order.order_id,
    )
    return OutboxEntry.for_message(message, ORDER_TOPIC, aggregate_id=order.order_id)


def order_cancelled_event(order: Order) -> OutboxEntry:
    message = OrderCancelledMessage(
        order_id=order.order_id,
        user_id=order.user_id,
        reason=order.cancellation_reason or "",
        items=_items(order),
        sender=SENDER,
        correlation_id=order.order_id,
    )
    return OutboxEntry.for_message(message, ORDER_TOPIC, aggregate_id=order.order_id)
