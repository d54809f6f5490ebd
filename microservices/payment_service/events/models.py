"""
Payment Service Event Models

Topics published and consumed by payment_service. Message payload models
live in core.messages so producers and consumers share one contract.
"""

from enum import Enum

from core.messages import Topics


class PaymentEventType(str, Enum):
    """
    Events published by payment_service, all on the payment_events topic.

    Stream: PAYMENTS
    Subjects: payment_events
    """
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_PROCESSED = "refund_processed"


class PaymentSubscribedEventType(str, Enum):
    """Events that payment_service subscribes to from other services."""
    ORDER_CANCELLED = "order_cancelled"


PAYMENT_TOPIC = Topics.PAYMENT_EVENTS
