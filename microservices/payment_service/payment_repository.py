"""
Payment Repository

Data access layer for payment operations using PostgresClient.
Matches schema: payment.transactions, payment.status_history,
payment.refunds, payment.outbox_events

Status changes are conditional updates on the current status; the status
history row and any outbox row are written in the same transaction.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from core.errors import ConflictError, NotFoundError, Result, ServiceError, ValidationError
from core.outbox import OutboxEntry, PostgresOutboxStore
from core.postgres_client import PostgresClient

from .models import (
    PaymentStatusHistory, PaymentTransaction, REFUNDABLE_STATUSES, Refund, RefundOutcome,
    RefundStatus, TransactionStatus,
)
from .protocols import RefundEvent, TransactionEvent

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Columns a status transition may set alongside the status
_UPDATABLE = ("transaction_reference", "error_message", "paid_at", "provider")


class PaymentRepository:
    """
    Repository for payment data operations.

    Tables:
        - payment.transactions: one row per payment attempt
        - payment.status_history: append-only transition log
        - payment.refunds: refund requests and their settlement
        - payment.outbox_events: payment_events awaiting publish
    """

    def __init__(self, db: PostgresClient):
        self.db = db
        self.schema = "payment"
        self.outbox = PostgresOutboxStore(db, self.schema)

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.apply_migrations(MIGRATIONS_DIR)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction(self, transaction: PaymentTransaction, reason: str) -> PaymentTransaction:
        async with self.db.transaction() as conn:
            await conn.execute(
                f'''INSERT INTO {self.schema}.transactions
                    (transaction_id, order_id, user_id, amount, currency, payment_method_id,
                     provider, status, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)''',
                transaction.transaction_id,
                transaction.order_id,
                transaction.user_id,
                transaction.amount,
                transaction.currency,
                transaction.payment_method_id,
                transaction.provider,
                transaction.status.value,
                transaction.created_at,
            )
            await self._insert_history(conn, transaction.transaction_id, None, transaction.status, reason, transaction.created_at)
        return transaction

    async def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.transactions WHERE transaction_id = $1', transaction_id
        )
        return PaymentTransaction.model_validate(row) if row else None

    async def list_transactions_by_order(self, order_id: str) -> List[PaymentTransaction]:
        rows = await self.db.query(
            f'SELECT * FROM {self.schema}.transactions WHERE order_id = $1 ORDER BY created_at',
            order_id,
        )
        return [PaymentTransaction.model_validate(r) for r in rows]

    async def list_user_transactions(self, user_id: str, limit: int = 50) -> List[PaymentTransaction]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.transactions WHERE user_id = $1
                ORDER BY created_at DESC LIMIT {int(limit)}''',
            user_id,
        )
        return [PaymentTransaction.model_validate(r) for r in rows]

    async def transition_status(
        self,
        transaction_id: str,
        from_statuses: Sequence[TransactionStatus],
        to_status: TransactionStatus,
        reason: str,
        now: datetime,
        changes: Optional[Dict[str, Any]] = None,
        event: Optional[TransactionEvent] = None,
    ) -> Result[PaymentTransaction]:
        changes = {k: v for k, v in (changes or {}).items() if k in _UPDATABLE}
        assignments = "".join(f", {column} = ${i}" for i, column in enumerate(changes, start=5))
        try:
            async with self.db.transaction() as conn:
                previous = await conn.fetchrow(
                    f'SELECT status FROM {self.schema}.transactions WHERE transaction_id = $1 FOR UPDATE',
                    transaction_id,
                )
                if previous is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
                row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.transactions
                        SET status = $2, updated_at = $3{assignments}
                        WHERE transaction_id = $1 AND status = ANY($4::text[])
                        RETURNING *''',
                    transaction_id, to_status.value, now, [s.value for s in from_statuses], *changes.values(),
                )
                if row is None:
                    raise _transition_conflict(transaction_id, previous["status"], to_status)

                transaction = PaymentTransaction.model_validate(dict(row))
                await self._insert_history(
                    conn, transaction_id, TransactionStatus(previous["status"]), to_status, reason, now
                )
                if event is not None:
                    await self._add_event(conn, event(transaction))
        except (ConflictError, NotFoundError) as e:
            return Result.failure(e)
        return Result.success(transaction)

    async def get_status_history(self, transaction_id: str) -> List[PaymentStatusHistory]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.status_history WHERE transaction_id = $1
                ORDER BY created_at, history_id''',
            transaction_id,
        )
        return [PaymentStatusHistory.model_validate(r) for r in rows]

    # =========================================================================
    # Refunds
    # =========================================================================

    async def begin_refund(self, refund: Refund, now: datetime) -> Result[RefundOutcome]:
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    f'SELECT * FROM {self.schema}.transactions WHERE transaction_id = $1 FOR UPDATE',
                    refund.transaction_id,
                )
                if row is None:
                    raise NotFoundError(f"Transaction {refund.transaction_id} not found")
                transaction = PaymentTransaction.model_validate(dict(row))
                if transaction.status not in REFUNDABLE_STATUSES:
                    raise _transition_conflict(
                        transaction.transaction_id, transaction.status.value, TransactionStatus.REFUNDING
                    )

                refunded = await self._completed_refund_total(conn, transaction.transaction_id)
                remaining = transaction.amount - refunded
                if refund.amount > remaining:
                    raise ValidationError(
                        f"Refund {refund.amount} exceeds remaining balance {remaining}",
                        details={"amount": str(refund.amount), "remaining": str(remaining)},
                    )

                updated = await conn.fetchrow(
                    f'''UPDATE {self.schema}.transactions SET status = $2, updated_at = $3
                        WHERE transaction_id = $1 RETURNING *''',
                    transaction.transaction_id, TransactionStatus.REFUNDING.value, now,
                )
                await self._insert_history(
                    conn, transaction.transaction_id, transaction.status, TransactionStatus.REFUNDING,
                    f"refund {refund.refund_id} requested", now,
                )
                refund = refund.model_copy(update={
                    "previous_transaction_status": transaction.status,
                    "created_at": now,
                })
                await conn.execute(
                    f'''INSERT INTO {self.schema}.refunds
                        (refund_id, transaction_id, amount, reason, status, requested_by,
                         previous_transaction_status, created_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)''',
                    refund.refund_id, refund.transaction_id, refund.amount, refund.reason,
                    refund.status.value, refund.requested_by,
                    refund.previous_transaction_status.value, refund.created_at,
                )
        except (ConflictError, NotFoundError, ValidationError) as e:
            return Result.failure(e)
        except asyncpg.UniqueViolationError:
            return Result.failure(ConflictError(
                f"Transaction {refund.transaction_id} already has a refund in progress",
                details={"status": TransactionStatus.REFUNDING.value},
            ))
        return Result.success(RefundOutcome(
            transaction=PaymentTransaction.model_validate(dict(updated)), refund=refund
        ))

    async def resolve_refund(
        self,
        refund_id: str,
        success: bool,
        now: datetime,
        external_refund_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        event: Optional[RefundEvent] = None,
    ) -> Result[RefundOutcome]:
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.refunds
                        SET status = $2, external_refund_id = COALESCE($3, external_refund_id),
                            failure_reason = $4, processed_at = $5
                        WHERE refund_id = $1 AND status = 'pending'
                        RETURNING *''',
                    refund_id,
                    (RefundStatus.COMPLETED if success else RefundStatus.FAILED).value,
                    external_refund_id,
                    None if success else failure_reason,
                    now,
                )
                if row is None:
                    raise await self._refund_conflict(conn, refund_id)
                refund = Refund.model_validate(dict(row))

                if success:
                    tx_row = await conn.fetchrow(
                        f'SELECT amount FROM {self.schema}.transactions WHERE transaction_id = $1',
                        refund.transaction_id,
                    )
                    refunded = await self._completed_refund_total(conn, refund.transaction_id)
                    to_status = (
                        TransactionStatus.REFUNDED if refunded >= tx_row["amount"]
                        else TransactionStatus.PARTIALLY_REFUNDED
                    )
                    reason = f"refund {refund_id} completed"
                else:
                    to_status = refund.previous_transaction_status
                    reason = f"refund {refund_id} failed: {failure_reason or 'provider rejected'}"

                tx_row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.transactions SET status = $2, updated_at = $3
                        WHERE transaction_id = $1 AND status = 'refunding'
                        RETURNING *''',
                    refund.transaction_id, to_status.value, now,
                )
                if tx_row is None:
                    raise ConflictError(f"Transaction {refund.transaction_id} is not refunding")
                await self._insert_history(
                    conn, refund.transaction_id, TransactionStatus.REFUNDING, to_status, reason, now
                )
                outcome = RefundOutcome(transaction=PaymentTransaction.model_validate(dict(tx_row)), refund=refund)
                if event is not None:
                    await self._add_event(conn, event(outcome))
        except (ConflictError, NotFoundError) as e:
            return Result.failure(e)
        return Result.success(outcome)

    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.refunds WHERE refund_id = $1', refund_id
        )
        return Refund.model_validate(row) if row else None

    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.refunds WHERE transaction_id = $1
                ORDER BY created_at, refund_id''',
            transaction_id,
        )
        return [Refund.model_validate(r) for r in rows]

    # =========================================================================
    # Outbox
    # =========================================================================

    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        return await self.outbox.fetch_pending_events(limit)

    async def mark_event_dispatched(self, event_id: str) -> None:
        await self.outbox.mark_event_dispatched(event_id)

    async def record_event_failure(self, event_id: str, error: str) -> None:
        await self.outbox.record_event_failure(event_id, error)

    async def park_event(self, event_id: str, error: str) -> None:
        await self.outbox.park_event(event_id, error)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _add_event(self, conn, entry: Optional[OutboxEntry]) -> None:
        if entry is not None:
            await self.outbox.add(conn, entry)

    async def _completed_refund_total(self, conn, transaction_id: str) -> Decimal:
        total = await conn.fetchval(
            f'''SELECT COALESCE(SUM(amount), 0) FROM {self.schema}.refunds
                WHERE transaction_id = $1 AND status = 'completed' ''',
            transaction_id,
        )
        return Decimal(total)

    async def _refund_conflict(self, conn, refund_id: str) -> ServiceError:
        row = await conn.fetchrow(
            f'SELECT status FROM {self.schema}.refunds WHERE refund_id = $1', refund_id
        )
        if row is None:
            return NotFoundError(f"Refund {refund_id} not found")
        return ConflictError(
            f"Refund {refund_id} is already {row['status']}", details={"status": row["status"]}
        )

    async def _insert_history(
        self, conn, transaction_id: str, previous: Optional[TransactionStatus],
        current: TransactionStatus, reason: str, now: datetime,
    ) -> None:
        await conn.execute(
            f'''INSERT INTO {self.schema}.status_history
                (history_id, transaction_id, previous_status, current_status, reason, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)''',
            f"hist_{uuid.uuid4().hex[:16]}",
            transaction_id,
            previous.value if previous else None,
            current.value,
            reason,
            now,
        )


def _transition_conflict(transaction_id: str, current: str, to_status: TransactionStatus) -> ConflictError:
    return ConflictError(
        f"Transaction {transaction_id} is {current}, cannot move to {to_status.value}",
        details={"status": current},
    )
