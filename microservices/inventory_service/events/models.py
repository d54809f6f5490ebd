"""
Inventory Service Event Models

Topics published and consumed by inventory_service. Message payload models
live in core.messages so producers and consumers share one contract.
"""

from enum import Enum

from core.messages import Topics


class InventoryEventType(str, Enum):
    """
    Events published by inventory_service.

    Stream: INVENTORY
    Subjects: inventory.>
    """
    INVENTORY_UPDATED = Topics.INVENTORY_UPDATED
    INVENTORY_LOW = Topics.INVENTORY_LOW
    INVENTORY_RESERVED = Topics.INVENTORY_RESERVED


class InventorySubscribedEventType(str, Enum):
    """Events that inventory_service subscribes to from other services."""
    ORDER_CANCELLED = "order_cancelled"
