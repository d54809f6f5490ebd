"""
Payment Service Business Logic

Transaction state machine and refunds. Every transition is a guarded update
in the repository that appends one status history row; payment_events are
written to the outbox in the same transaction and dispatched after commit.

    pending ──authorize──> authorized
    pending|authorized ──capture──> completed
    pending|authorized ──fail──> failed
    pending|authorized ──cancel──> cancelled
    completed|partially_refunded ──refund──> refunding
    refunding ──settle──> partially_refunded | refunded | (prior status)
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from core.errors import ConflictError, NotFoundError, TransientInfraError
from core.messages import utcnow
from core.outbox import OutboxDispatcher

from .events.publishers import payment_completed_event, payment_failed_event, refund_processed_event
from .models import (
    OPEN_STATUSES, PaymentStatusHistory, PaymentTransaction, Refund, RefundCreateRequest,
    RefundStatus, TransactionStatus,
)
from .protocols import PaymentRepositoryProtocol
from .providers import MockPaymentProvider, PaymentProvider

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Payment transaction manager

    `outbox` publishes the rows written by each transition; without one the
    rows stay pending for a separately running dispatcher.
    """

    def __init__(
        self,
        repository: PaymentRepositoryProtocol,
        provider: Optional[PaymentProvider] = None,
        outbox: Optional[OutboxDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
        default_currency: str = "USD",
    ):
        self.repository = repository
        self.provider = provider or MockPaymentProvider()
        self.outbox = outbox
        self.clock = clock
        self.default_currency = default_currency

    # ====================
    # Transactions
    # ====================

    async def create_payment(
        self,
        order_id: str,
        user_id: str,
        amount: Decimal,
        currency: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> PaymentTransaction:
        now = self.clock()
        transaction = PaymentTransaction(
            transaction_id=f"txn_{uuid.uuid4().hex[:16]}",
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            currency=currency or self.default_currency,
            payment_method_id=payment_method_id,
            provider=self.provider.name,
            status=TransactionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        created = await self.repository.create_transaction(transaction, reason="payment created")
        logger.info(f"Payment {created.transaction_id} created for order {order_id}: {amount} {created.currency}")
        return created

    async def get_payment(self, transaction_id: str) -> PaymentTransaction:
        transaction = await self.repository.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    async def list_order_payments(self, order_id: str) -> List[PaymentTransaction]:
        return await self.repository.list_transactions_by_order(order_id)

    async def list_user_payments(self, user_id: str, limit: int = 50) -> List[PaymentTransaction]:
        return await self.repository.list_user_transactions(user_id, limit)

    async def get_status_history(self, transaction_id: str) -> List[PaymentStatusHistory]:
        await self.get_payment(transaction_id)
        return await self.repository.get_status_history(transaction_id)

    async def authorize_payment(self, transaction_id: str, transaction_reference: Optional[str] = None) -> PaymentTransaction:
        """Pending -> Authorized; `transaction_reference` is the provider's payment intent id"""
        changes = {"transaction_reference": transaction_reference} if transaction_reference else None
        result = await self.repository.transition_status(
            transaction_id, [TransactionStatus.PENDING], TransactionStatus.AUTHORIZED,
            "payment authorized", self.clock(), changes=changes,
        )
        return result.unwrap()

    async def capture_payment(self, transaction_id: str) -> PaymentTransaction:
        """
        Capture with the provider and complete the transaction.

        A declined capture fails the transaction (payment_failed); an
        unreachable provider raises TransientInfraError and changes nothing.

        Raises:
            NotFoundError: no such transaction
            ConflictError: transaction is not pending or authorized
        """
        transaction = await self.get_payment(transaction_id)
        if transaction.status not in OPEN_STATUSES:
            raise ConflictError(
                f"Transaction {transaction_id} is {transaction.status.value}, cannot move to completed",
                details={"status": transaction.status.value},
            )

        outcome = await self.provider.capture(transaction)
        if not outcome.success:
            logger.warning(f"Capture declined for {transaction_id}: {outcome.error}")
            return await self.fail_payment(transaction_id, outcome.error or "capture declined", can_retry=True)

        now = self.clock()
        result = await self.repository.transition_status(
            transaction_id, OPEN_STATUSES, TransactionStatus.COMPLETED, "payment captured", now,
            changes={"paid_at": now, "transaction_reference": outcome.reference or transaction.transaction_reference},
            event=payment_completed_event,
        )
        completed = result.unwrap()
        logger.info(f"Payment {transaction_id} completed for order {completed.order_id}")
        await self._dispatch()
        return completed

    async def fail_payment(self, transaction_id: str, reason: str, can_retry: bool = True) -> PaymentTransaction:
        result = await self.repository.transition_status(
            transaction_id, OPEN_STATUSES, TransactionStatus.FAILED, reason, self.clock(),
            changes={"error_message": reason},
            event=lambda tx: payment_failed_event(tx, can_retry),
        )
        failed = result.unwrap()
        logger.info(f"Payment {transaction_id} failed: {reason}")
        await self._dispatch()
        return failed

    async def cancel_payment(self, transaction_id: str, reason: str = "") -> PaymentTransaction:
        result = await self.repository.transition_status(
            transaction_id, OPEN_STATUSES, TransactionStatus.CANCELLED,
            reason or "payment cancelled", self.clock(),
        )
        cancelled = result.unwrap()
        logger.info(f"Payment {transaction_id} cancelled")
        return cancelled

    async def cancel_open_payments(self, order_id: str, reason: str) -> int:
        """Cancel the order's payments that were never captured; returns how many"""
        cancelled = 0
        for transaction in await self.repository.list_transactions_by_order(order_id):
            if transaction.status not in OPEN_STATUSES:
                continue
            result = await self.repository.transition_status(
                transaction.transaction_id, OPEN_STATUSES, TransactionStatus.CANCELLED, reason, self.clock(),
            )
            if result.ok:
                cancelled += 1
            else:
                logger.info(f"Payment {transaction.transaction_id} left as is: {result.error.message}")
        return cancelled

    # ====================
    # Refunds
    # ====================

    async def create_refund(self, request: RefundCreateRequest, requested_by: Optional[str] = None) -> Refund:
        """
        Lock the transaction as Refunding, submit the refund to the provider
        and settle it.

        Returns the refund as settled; `pending` when the provider settles
        later through process_refund.

        Raises:
            NotFoundError: no such transaction
            ConflictError: transaction is not refundable or a refund is in flight
            ValidationError: amount exceeds the remaining refundable balance
        """
        refund = Refund(
            refund_id=f"ref_{uuid.uuid4().hex[:16]}",
            transaction_id=request.transaction_id,
            amount=request.amount,
            reason=request.reason,
            status=RefundStatus.PENDING,
            requested_by=requested_by,
        )
        started = (await self.repository.begin_refund(refund, self.clock())).unwrap()
        refund = started.refund
        logger.info(f"Refund {refund.refund_id} of {refund.amount} started for {refund.transaction_id}")

        try:
            outcome = await self.provider.refund(started.transaction, refund)
        except Exception as e:
            logger.error(f"Refund {refund.refund_id} not submitted, releasing {refund.transaction_id}: {e!r}")
            await self.process_refund(refund.refund_id, success=False, failure_reason=f"{type(e).__name__}: {e}")
            raise

        if outcome.pending:
            logger.info(f"Refund {refund.refund_id} accepted by provider, awaiting settlement")
            return refund
        return await self.process_refund(
            refund.refund_id,
            success=outcome.success,
            external_refund_id=outcome.reference,
            failure_reason=outcome.error,
        )

    async def process_refund(
        self,
        refund_id: str,
        success: bool,
        external_refund_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Refund:
        """
        Settle a pending refund: success moves the transaction to
        PartiallyRefunded or Refunded by completed total, failure returns it
        to the status it had before the refund started.

        Raises:
            NotFoundError: no such refund
            ConflictError: refund already settled
        """
        result = await self.repository.resolve_refund(
            refund_id, success, self.clock(),
            external_refund_id=external_refund_id,
            failure_reason=failure_reason,
            event=refund_processed_event,
        )
        outcome = result.unwrap()
        logger.info(
            f"Refund {refund_id} {outcome.refund.status.value}; "
            f"transaction {outcome.transaction.transaction_id} now {outcome.transaction.status.value}"
        )
        await self._dispatch()
        return outcome.refund

    async def get_refund(self, refund_id: str) -> Refund:
        refund = await self.repository.get_refund(refund_id)
        if refund is None:
            raise NotFoundError(f"Refund {refund_id} not found")
        return refund

    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        await self.get_payment(transaction_id)
        return await self.repository.list_refunds(transaction_id)

    async def _dispatch(self) -> None:
        """Publish committed outbox rows; rows left behind go out on the dispatcher's next pass"""
        if self.outbox is None:
            return
        try:
            await self.outbox.dispatch_pending()
        except TransientInfraError as e:
            logger.warning(f"Outbox dispatch deferred: {e}")
