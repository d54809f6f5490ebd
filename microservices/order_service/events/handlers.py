"""
Order Service Event Handlers

Handlers for payment_events. Idempotency lives in the order service inbox
(processed message ids), so redelivered messages are no-ops and a handler
returns only after its state change committed.
"""

import logging
from typing import Callable, Dict, Tuple, Type

from core.messages import (
    BaseMessage, PaymentCompletedMessage, PaymentFailedMessage, RefundProcessedMessage, Topics,
)

logger = logging.getLogger(__name__)


async def handle_payment_completed(message: PaymentCompletedMessage, order_service) -> None:
    """
    Handle payment_completed event

    Mark the order paid and queue order_paid.
    """
    await order_service.handle_payment_completed(message)


async def handle_payment_failed(message: PaymentFailedMessage, order_service) -> None:
    if not message.can_retry:
        logger.info(f"Payment {message.transaction_id} for order {message.order_id} failed permanently")
    await order_service.handle_payment_failed(message)


async def handle_refund_processed(message: RefundProcessedMessage, order_service) -> None:
    await order_service.handle_refund_processed(message)


def get_event_handlers(order_service) -> Dict[Tuple[str, Type[BaseMessage]], Callable]:
    """
    Get all event handlers for order service.

    Returns a dict mapping (topic, message model) to handler functions.
    """
    return {
        (Topics.PAYMENT_EVENTS, PaymentCompletedMessage):
            lambda message: handle_payment_completed(message, order_service),
        (Topics.PAYMENT_EVENTS, PaymentFailedMessage):
            lambda message: handle_payment_failed(message, order_service),
        (Topics.PAYMENT_EVENTS, RefundProcessedMessage):
            lambda message: handle_refund_processed(message, order_service),
    }
