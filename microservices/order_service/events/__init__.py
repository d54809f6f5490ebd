"""
Order Service Events Module

Exports all event-related functionality for order service
"""

from .models import (
    OrderEventType,
    OrderSubscribedEventType,
)

from .publishers import (
    order_created_event,
    order_paid_event,
    order_cancelled_event,
)

from .handlers import get_event_handlers

__all__ = [
    # Event Types
    "OrderEventType",
    "OrderSubscribedEventType",
    # Outbox builders
    "order_created_event",
    "order_paid_event",
    "order_cancelled_event",
    # Handlers
    "get_event_handlers",
]
