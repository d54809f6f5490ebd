"""
Payment Service Events Module

Exports all event-related functionality for payment service
"""

from .models import (
    PaymentEventType,
    PaymentSubscribedEventType,
)

from .publishers import (
    payment_completed_event,
    payment_failed_event,
    refund_processed_event,
)

from .handlers import get_event_handlers

__all__ = [
    # Event Types
    "PaymentEventType",
    "PaymentSubscribedEventType",
    # Outbox builders
    "payment_completed_event",
    "payment_failed_event",
    "refund_processed_event",
    # Handlers
    "get_event_handlers",
]
