"""
Order Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from core.errors import Result
from core.outbox import OutboxEntry

# Import only models (no I/O dependencies)
from .models import Cart, Order, OrderEvent, OrderStatus, OrderStatusHistory

OrderEventBuilder = Callable[[Order], Optional[OutboxEntry]]


# ============================================================================
# Repository Protocol
# ============================================================================

@runtime_checkable
class OrderRepositoryProtocol(Protocol):
    """
    Interface for Order Repository.

    Implementations must provide these methods.
    Used for dependency injection to enable testing.
    """

    # Carts
    async def save_cart(self, cart: Cart) -> Cart:
        ...

    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        ...

    # Orders
    async def create_order_with_outbox(
        self, order: Order, history: OrderStatusHistory, event: OutboxEntry, cart_id: str
    ) -> Result[Order]:
        """
        One transaction: mark the cart ordered (must still be active), insert
        order, items, first history row and the order_created outbox row.
        """
        ...

    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    async def list_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        ...

    async def get_status_history(self, order_id: str) -> List[OrderStatusHistory]:
        ...

    async def transition_status(
        self,
        order_id: str,
        from_statuses: Sequence[OrderStatus],
        to_status: OrderStatus,
        comment: str,
        changed_by: Optional[str],
        now: datetime,
        changes: Optional[Dict[str, Any]] = None,
        event: Optional[OrderEventBuilder] = None,
        message_id: Optional[str] = None,
        handler: str = "",
    ) -> Result[Order]:
        """
        Guarded status change, history row, optional outbox row and, for
        message handlers, the inbox row for `message_id`, in one transaction.
        A status outside `from_statuses` yields ConflictError; a message id
        already in the inbox yields DuplicateMessageError.
        """
        ...

    # Inbox
    async def is_message_processed(self, message_id: str) -> bool:
        ...

    async def mark_message_processed(self, message_id: str, handler: str) -> bool:
        """Record a handled message; False when it was already recorded"""
        ...

    # Outbox
    async def get_order_events(self, order_id: str) -> List[OrderEvent]:
        ...

    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        ...

    async def mark_event_dispatched(self, event_id: str) -> None:
        ...

    async def record_event_failure(self, event_id: str, error: str) -> None:
        ...

    async def park_event(self, event_id: str, error: str) -> None:
        ...


# ============================================================================
# Client Protocols
# ============================================================================

@runtime_checkable
class InventoryClientProtocol(Protocol):
    """Interface for inventory_service client"""

    async def confirm_reservation(self, reservation_id: str, reference_id: str) -> Dict[str, Any]:
        """Confirm the hold; returns the reservation as stored by inventory"""
        ...

    async def rollback(self, reference_id: str, items: List[Dict[str, Any]], reason: str) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...
