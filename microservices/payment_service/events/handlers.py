"""
Payment Service Event Handlers

order_cancelled: cancel the order's payments that were never captured.
"""

import logging
from typing import Callable, Dict, Tuple, Type

from core.messages import BaseMessage, OrderCancelledMessage, Topics

logger = logging.getLogger(__name__)


async def handle_order_cancelled(message: OrderCancelledMessage, payment_service) -> None:
    cancelled = await payment_service.cancel_open_payments(
        message.order_id, f"order cancelled: {message.reason}" if message.reason else "order cancelled"
    )
    if cancelled:
        logger.info(f"Cancelled {cancelled} open payments for order {message.order_id}")


def get_event_handlers(payment_service) -> Dict[Tuple[str, Type[BaseMessage]], Callable]:
    """
    Get all event handlers for payment service.

    Returns a dict mapping (topic, message model) to handler functions.
    """
    return {
        (Topics.ORDER_EVENTS, OrderCancelledMessage):
            lambda message: handle_order_cancelled(message, payment_service),
    }
