"""
Inventory Service Events Module

Exports all event-related functionality for inventory service
"""

from .models import (
    InventoryEventType,
    InventorySubscribedEventType,
)

from .publishers import (
    publish_inventory_updated,
    publish_inventory_low,
    publish_inventory_reserved,
)

from .handlers import get_event_handlers

__all__ = [
    # Event Types
    "InventoryEventType",
    "InventorySubscribedEventType",
    # Publishers
    "publish_inventory_updated",
    "publish_inventory_low",
    "publish_inventory_reserved",
    # Handlers
    "get_event_handlers",
]
