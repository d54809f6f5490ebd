"""
Inventory Service Event Handlers

Handlers for events from other services. Each handler commits through the
inventory service before returning; the bus acknowledges afterwards.
"""

import logging
from typing import Callable, Dict, Tuple, Type

from core.messages import BaseMessage, OrderCancelledMessage, Topics

from ..models import ReservationItem

logger = logging.getLogger(__name__)


async def handle_order_cancelled(message: OrderCancelledMessage, inventory_service) -> None:
    """
    Handle order_cancelled event

    Roll back the stock confirmed for the order. Keyed by order id, so a
    redelivered message is a no-op.
    """
    if not message.items:
        logger.info(f"order_cancelled for {message.order_id} carries no items, nothing to roll back")
        return

    items = [
        ReservationItem(product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity)
        for i in message.items
    ]
    await inventory_service.rollback_inventory(
        reference_id=message.order_id,
        items=items,
        reason=f"order cancelled: {message.reason}" if message.reason else "order cancelled",
        user_id=message.user_id,
    )


def get_event_handlers(inventory_service) -> Dict[Tuple[str, Type[BaseMessage]], Callable]:
    """
    Get all event handlers for inventory service.

    Returns a dict mapping (topic, message model) to handler functions.
    """
    return {
        (Topics.ORDER_EVENTS, OrderCancelledMessage):
            lambda message: handle_order_cancelled(message, inventory_service),
    }
