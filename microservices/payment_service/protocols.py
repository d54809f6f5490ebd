"""
Payment Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from core.errors import Result
from core.outbox import OutboxEntry

from .models import (
    PaymentStatusHistory,
    PaymentTransaction,
    Refund,
    RefundOutcome,
    TransactionStatus,
)

TransactionEvent = Callable[[PaymentTransaction], Optional[OutboxEntry]]
RefundEvent = Callable[[RefundOutcome], Optional[OutboxEntry]]


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class PaymentRepositoryProtocol(Protocol):
    """Protocol for payment data repository"""

    async def create_transaction(self, transaction: PaymentTransaction, reason: str) -> PaymentTransaction:
        """Insert a pending transaction and its first history row"""
        ...

    async def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        ...

    async def list_transactions_by_order(self, order_id: str) -> List[PaymentTransaction]:
        ...

    async def list_user_transactions(self, user_id: str, limit: int = 50) -> List[PaymentTransaction]:
        ...

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
        """
        Guarded status change. In one transaction: conditional update,
        history row and the outbox row built by `event` from the new state.
        A transaction outside `from_statuses` yields ConflictError.
        """
        ...

    async def get_status_history(self, transaction_id: str) -> List[PaymentStatusHistory]:
        ...

    # Refunds
    async def begin_refund(self, refund: Refund, now: datetime) -> Result[RefundOutcome]:
        """
        Move Completed|PartiallyRefunded -> Refunding and insert the pending
        refund in one transaction. ValidationError when the refund exceeds the
        remaining balance, ConflictError when another refund holds the lock.
        """
        ...

    async def resolve_refund(
        self,
        refund_id: str,
        success: bool,
        now: datetime,
        external_refund_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        event: Optional[RefundEvent] = None,
    ) -> Result[RefundOutcome]:
        """Settle a pending refund and release the Refunding lock"""
        ...

    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        ...

    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        ...

    # Outbox
    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        ...

    async def mark_event_dispatched(self, event_id: str) -> None:
        ...

    async def record_event_failure(self, event_id: str, error: str) -> None:
        ...

    async def park_event(self, event_id: str, error: str) -> None:
        ...
