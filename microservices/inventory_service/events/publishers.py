"""
Inventory Service Event Publishers

Functions to publish events from inventory service. Called after the
owning transaction committed; a failed publish is logged and reported as
False, the committed state is not rolled back.
"""

import logging
from datetime import datetime
from typing import List, Optional

from core.errors import TransientInfraError
from core.messages import (
    InventoryLowMessage, InventoryReservedMessage, InventoryUpdatedMessage, ItemQuantity,
)

from .models import InventoryEventType

logger = logging.getLogger(__name__)


async def publish_inventory_updated(
    event_bus,
    product_id: str,
    new_quantity: int,
    quantity_change: int,
    reason: str,
    variant_id: Optional[str] = None,
    product_name: str = "",
    reference_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> bool:
    """Publish inventory.updated event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping inventory.updated event")
        return False

    try:
        message = InventoryUpdatedMessage(
            product_id=product_id,
            variant_id=variant_id,
            product_name=product_name,
            new_quantity=new_quantity,
            quantity_change=quantity_change,
            reason=reason,
            reference_id=reference_id,
            user_id=user_id,
            correlation_id=reference_id,
        )
        await event_bus.publish(message, InventoryEventType.INVENTORY_UPDATED.value)
        logger.info(f"Published inventory.updated event for {product_id} ({quantity_change:+d})")
        return True

    except TransientInfraError as e:
        logger.error(f"Failed to publish inventory.updated event: {e}")
        return False


async def publish_inventory_low(
    event_bus,
    product_id: str,
    current_quantity: int,
    threshold: int,
    variant_id: Optional[str] = None,
    product_name: str = "",
) -> bool:
    """Publish inventory.low event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping inventory.low event")
        return False

    try:
        message = InventoryLowMessage(
            product_id=product_id,
            variant_id=variant_id,
            product_name=product_name,
            current_quantity=current_quantity,
            threshold=threshold,
        )
        await event_bus.publish(message, InventoryEventType.INVENTORY_LOW.value)
        logger.info(f"Published inventory.low event for {product_id}: {current_quantity}/{threshold}")
        return True

    except TransientInfraError as e:
        logger.error(f"Failed to publish inventory.low event: {e}")
        return False


async def publish_inventory_reserved(
    event_bus,
    reservation_id: str,
    owner_id: str,
    owner_type: str,
    expires_at: datetime,
    items: List[ItemQuantity],
) -> bool:
    """Publish inventory.reserved event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping inventory.reserved event")
        return False

    try:
        message = InventoryReservedMessage(
            reservation_id=reservation_id,
            owner_id=owner_id,
            owner_type=owner_type,
            expires_at=expires_at,
            items=items,
            correlation_id=reservation_id,
        )
        await event_bus.publish(message, InventoryEventType.INVENTORY_RESERVED.value)
        logger.info(f"Published inventory.reserved event for reservation {reservation_id}")
        return True

    except TransientInfraError as e:
        logger.error(f"Failed to publish inventory.reserved event: {e}")
        return False
