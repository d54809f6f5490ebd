"""
Payment Service Event Publishers

Payment events go through the outbox: each builder returns the OutboxEntry
the repository writes in the same transaction as the status change. The
dispatcher publishes it after commit.
"""

from core.messages import (
    PaymentCompletedMessage, PaymentFailedMessage, RefundProcessedMessage,
)
from core.outbox import OutboxEntry

from ..models import PaymentTransaction, RefundOutcome, TransactionStatus
from .models import PAYMENT_TOPIC

SENDER = "payment_service"


def payment_completed_event(transaction: PaymentTransaction) -> OutboxEntry:
    message = PaymentCompletedMessage(
        transaction_id=transaction.transaction_id,
        order_id=transaction.order_id,
        user_id=transaction.user_id,
        amount=transaction.amount,
        provider=transaction.provider,
        transaction_reference=transaction.transaction_reference,
        sender=SENDER,
        correlation_id=transaction.order_id,
    )
    return OutboxEntry.for_message(message, PAYMENT_TOPIC, aggregate_id=transaction.transaction_id)


def payment_failed_event(transaction: PaymentTransaction, can_retry: bool) -> OutboxEntry:
    message = PaymentFailedMessage(
        transaction_id=transaction.transaction_id,
        order_id=transaction.order_id,
        user_id=transaction.user_id,
        amount=transaction.amount,
        failure_reason=transaction.error_message or "payment failed",
        can_retry=can_retry,
        sender=SENDER,
        correlation_id=transaction.order_id,
    )
    return OutboxEntry.for_message(message, PAYMENT_TOPIC, aggregate_id=transaction.transaction_id)


def refund_processed_event(outcome: RefundOutcome) -> OutboxEntry:
    transaction, refund = outcome.transaction, outcome.refund
    message = RefundProcessedMessage(
        refund_id=refund.refund_id,
        transaction_id=transaction.transaction_id,
        order_id=transaction.order_id,
        user_id=transaction.user_id,
        amount=refund.amount,
        status=refund.status.value,
        fully_refunded=transaction.status == TransactionStatus.REFUNDED,
        sender=SENDER,
        correlation_id=transaction.order_id,
    )
    return OutboxEntry.for_message(message, PAYMENT_TOPIC, aggregate_id=transaction.transaction_id)
