"""
Order Service Event Models

Topics published and consumed by order_service. Message payload models
live in core.messages so producers and consumers share one contract.
"""

from enum import Enum

from core.messages import Topics


class OrderEventType(str, Enum):
    """
    Events published by order_service, all on the order_events topic.

    Stream: ORDERS
    Subjects: order_events
    """
    ORDER_CREATED = "order_created"
    ORDER_PAID = "order_paid"
    ORDER_CANCELLED = "order_cancelled"


class OrderSubscribedEventType(str, Enum):
    """Events that order_service subscribes to from other services."""
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_PROCESSED = "refund_processed"


ORDER_TOPIC = Topics.ORDER_EVENTS
