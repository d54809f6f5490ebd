"""
Order Service Business Logic

Order saga coordinator. Orders are created from a cart whose reservations
are confirmed against inventory under the order id; the order, its items,
its first history row and the order_created outbox row commit together.
Payment outcomes arrive on payment_events and move the order through its
state machine. Every handler is idempotent on the message id (inbox table)
and commits before the bus acknowledges.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.errors import (
    ConflictError, DuplicateMessageError, NotFoundError, PermanentError, Result, TransientInfraError,
    ValidationError,
)
from core.messages import (
    PaymentCompletedMessage, PaymentFailedMessage, RefundProcessedMessage, utcnow,
)
from core.outbox import OutboxDispatcher

from .events.publishers import order_cancelled_event, order_created_event, order_paid_event
from .models import (
    Cart, CartItem, CartStatus, Order, OrderEvent, OrderItem, OrderStatus, OrderStatusHistory,
    ShippingAddress,
)
from .protocols import InventoryClientProtocol, OrderRepositoryProtocol
from .state_machine import PAID_STATUSES, check_transition

logger = logging.getLogger(__name__)

FULFILLMENT_STATUSES = (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
REFUNDABLE_STATUSES = (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED)

PAYMENT_ACTOR = "payment_service"


class OrderService:
    """
    Order Service - business logic layer

    Handles:
    - Cart checkout into orders (reservation confirmation, outbox)
    - Payment outcome handling (payment_completed / payment_failed / refund_processed)
    - Fulfilment status updates and cancellation
    """

    def __init__(
        self,
        repository: OrderRepositoryProtocol,
        inventory_client: Optional[InventoryClientProtocol] = None,
        outbox: Optional[OutboxDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
        default_currency: str = "USD",
    ):
        self.repository = repository
        self.inventory_client = inventory_client
        self.outbox = outbox
        self.clock = clock
        self.default_currency = default_currency

    # ====================
    # Carts
    # ====================

    async def create_cart(self, user_id: str, items: List[CartItem]) -> Cart:
        now = self.clock()
        cart = Cart(
            cart_id=f"cart_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            status=CartStatus.ACTIVE,
            items=items,
            created_at=now,
            updated_at=now,
        )
        return await self.repository.save_cart(cart)

    async def get_cart(self, cart_id: str, user_id: str) -> Cart:
        cart = await self.repository.get_cart(cart_id)
        if cart is None or cart.user_id != user_id:
            raise NotFoundError(f"Cart {cart_id} not found")
        return cart

    # ====================
    # Order creation
    # ====================

    async def create_order(self, cart_id: str, user_id: str, shipping_address: ShippingAddress) -> Order:
        """
        Check out a cart.

        Raises:
            NotFoundError: cart missing or owned by another user
            ValidationError: cart not active, empty, or a line without reservation
            ConflictError: a reservation is no longer active (e.g. expired)
        """
        cart = await self.get_cart(cart_id, user_id)
        if cart.status != CartStatus.ACTIVE:
            raise ValidationError(f"Cart {cart_id} is {cart.status.value}")
        if not cart.items:
            raise ValidationError(f"Cart {cart_id} is empty")
        unreserved = [i.product_id for i in cart.items if not i.reservation_id]
        if unreserved:
            raise ValidationError(
                f"Cart {cart_id} has lines without a reservation", details={"product_ids": unreserved}
            )

        order = self._build_order(cart, user_id, shipping_address)
        confirmed = await self._confirm_reservations(order)

        history = OrderStatusHistory(
            history_id=f"hist_{uuid.uuid4().hex[:16]}",
            order_id=order.order_id,
            status=OrderStatus.PENDING,
            comment="order created",
            changed_by=user_id,
            changed_at=order.created_at,
        )
        try:
            result = await self.repository.create_order_with_outbox(
                order, history, order_created_event(order), cart_id
            )
            created = result.unwrap()
        except Exception as e:
            await self._compensate(order.order_id, confirmed, f"order not created: {e}")
            raise

        logger.info(f"Order {created.order_id} ({created.order_number}) created for {user_id}: {created.total_amount}")
        await self._dispatch()
        return created

    def _build_order(self, cart: Cart, user_id: str, shipping_address: ShippingAddress) -> Order:
        now = self.clock()
        order_id = str(uuid.uuid4())
        return Order(
            order_id=order_id,
            order_number=f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
            user_id=user_id,
            status=OrderStatus.PENDING,
            total_amount=cart.total_amount,
            currency=self.default_currency,
            items=[
                OrderItem(
                    item_id=f"item_{uuid.uuid4().hex[:12]}",
                    order_id=order_id,
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    product_name=i.product_name,
                    unit_price=i.unit_price,
                    quantity=i.quantity,
                    reservation_id=i.reservation_id,
                )
                for i in cart.items
            ],
            shipping_address=shipping_address,
            created_at=now,
            updated_at=now,
        )

    async def _confirm_reservations(self, order: Order) -> List[Dict[str, Any]]:
        """Confirm each distinct reservation; on failure undo the ones already confirmed"""
        if self.inventory_client is None:
            raise PermanentError("Inventory client not configured")

        reservation_ids = list(dict.fromkeys(i.reservation_id for i in order.items))
        confirmed_items: List[Dict[str, Any]] = []
        for reservation_id in reservation_ids:
            try:
                reservation = await self.inventory_client.confirm_reservation(reservation_id, order.order_id)
            except Exception as e:
                await self._compensate(order.order_id, confirmed_items, f"reservation {reservation_id} failed: {e}")
                raise
            confirmed_items.extend(reservation.get("items", []))
        return confirmed_items

    async def _compensate(self, order_id: str, items: List[Dict[str, Any]], reason: str) -> None:
        if not items:
            return
        try:
            await self.inventory_client.rollback(order_id, items, reason)
            logger.info(f"Rolled back confirmed stock for {order_id}")
        except Exception as e:
            logger.error(f"Compensating rollback for {order_id} failed, stock stays decremented: {e}")

    # ====================
    # Payment outcomes
    # ====================

    async def handle_payment_completed(self, message: PaymentCompletedMessage) -> Optional[Order]:
        """pending|payment_failed -> paid; already paid is a no-op"""
        if await self.repository.is_message_processed(message.message_id):
            logger.info(f"payment_completed {message.message_id} already handled")
            return None

        order = await self._order_for_message(message.order_id, message)
        if order.status in PAID_STATUSES:
            logger.info(f"Order {order.order_id} already {order.status.value}, payment_completed is a no-op")
            await self.repository.mark_message_processed(message.message_id, "payment_completed")
            return order
        if order.status == OrderStatus.CANCELLED:
            logger.warning(
                f"Payment {message.transaction_id} completed for cancelled order {order.order_id}; refund required"
            )
            await self.repository.mark_message_processed(message.message_id, "payment_completed")
            return order

        result = await self.repository.transition_status(
            order.order_id,
            [OrderStatus.PENDING, OrderStatus.PAYMENT_FAILED],
            OrderStatus.PAID,
            comment=f"payment {message.transaction_id} completed",
            changed_by=PAYMENT_ACTOR,
            now=self.clock(),
            changes={"payment_id": message.transaction_id},
            event=lambda o: order_paid_event(o, message.transaction_id),
            message_id=message.message_id,
            handler="payment_completed",
        )
        return await self._finish_handler(
            result, order.order_id, message.message_id, "payment_completed", lambda o: o.status in PAID_STATUSES
        )

    async def handle_payment_failed(self, message: PaymentFailedMessage) -> Optional[Order]:
        """pending -> payment_failed; stale failures after payment are recorded and ignored"""
        if await self.repository.is_message_processed(message.message_id):
            logger.info(f"payment_failed {message.message_id} already handled")
            return None

        order = await self._order_for_message(message.order_id, message)
        if order.status != OrderStatus.PENDING:
            logger.info(f"Order {order.order_id} is {order.status.value}, payment_failed ignored")
            await self.repository.mark_message_processed(message.message_id, "payment_failed")
            return order

        result = await self.repository.transition_status(
            order.order_id,
            [OrderStatus.PENDING],
            OrderStatus.PAYMENT_FAILED,
            comment=f"payment {message.transaction_id} failed: {message.failure_reason}",
            changed_by=PAYMENT_ACTOR,
            now=self.clock(),
            message_id=message.message_id,
            handler="payment_failed",
        )
        return await self._finish_handler(
            result, order.order_id, message.message_id, "payment_failed", lambda o: o.status != OrderStatus.PENDING
        )

    async def handle_refund_processed(self, message: RefundProcessedMessage) -> Optional[Order]:
        """A completed refund that leaves the transaction fully refunded refunds the order"""
        if await self.repository.is_message_processed(message.message_id):
            logger.info(f"refund_processed {message.message_id} already handled")
            return None

        order = await self._order_for_message(message.order_id, message)
        if message.status != "completed" or not message.fully_refunded or order.status == OrderStatus.REFUNDED:
            logger.info(
                f"Refund {message.refund_id} ({message.status}, fully_refunded={message.fully_refunded}) "
                f"leaves order {order.order_id} {order.status.value}"
            )
            await self.repository.mark_message_processed(message.message_id, "refund_processed")
            return order

        result = await self.repository.transition_status(
            order.order_id,
            REFUNDABLE_STATUSES,
            OrderStatus.REFUNDED,
            comment=f"refund {message.refund_id} completed",
            changed_by=PAYMENT_ACTOR,
            now=self.clock(),
            message_id=message.message_id,
            handler="refund_processed",
        )
        return await self._finish_handler(
            result, order.order_id, message.message_id, "refund_processed", lambda o: o.status == OrderStatus.REFUNDED
        )

    async def _order_for_message(self, order_id: str, message) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise PermanentError(f"{message.message_type} {message.message_id} references unknown order {order_id}")
        return order

    async def _finish_handler(
        self,
        result: Result[Order],
        order_id: str,
        message_id: str,
        handler: str,
        already_applied: Callable[[Order], bool],
    ) -> Optional[Order]:
        if result.ok:
            logger.info(f"Order {result.value.order_id} -> {result.value.status.value}")
            await self._dispatch()
            return result.value
        if isinstance(result.error, DuplicateMessageError):
            logger.info(f"Message {message_id} handled concurrently")
            return None
        if isinstance(result.error, ConflictError):
            # A concurrent delivery may have applied the same transition first
            current = await self.repository.get_order(order_id)
            if current is not None and already_applied(current):
                await self.repository.mark_message_processed(message_id, handler)
                return current
        raise result.error

    # ====================
    # Fulfilment and cancellation
    # ====================

    async def update_status(
        self, order_id: str, new_status: OrderStatus, comment: str = "", changed_by: Optional[str] = None
    ) -> Order:
        """
        Move a paid order through processing / shipped / delivered.

        Raises:
            ValidationError: status is not a fulfilment step
            ConflictError: transition not allowed from the current status
        """
        if new_status not in FULFILLMENT_STATUSES:
            raise ValidationError(f"Status {new_status.value} cannot be set directly")
        order = await self.get_order(order_id)
        check_transition(order_id, order.status, new_status)

        result = await self.repository.transition_status(
            order_id, [order.status], new_status, comment or f"order {new_status.value}", changed_by, self.clock()
        )
        updated = result.unwrap()
        logger.info(f"Order {order_id} {order.status.value} -> {new_status.value}")
        return updated

    async def cancel_order(self, order_id: str, reason: str, changed_by: Optional[str] = None) -> Order:
        """
        Cancel an order that has not been paid. The order_cancelled message
        carries the items so inventory rolls the confirmed stock back.

        Raises:
            ConflictError: order already paid or terminal
        """
        order = await self.get_order(order_id)
        check_transition(order_id, order.status, OrderStatus.CANCELLED)

        result = await self.repository.transition_status(
            order_id,
            [OrderStatus.PENDING, OrderStatus.PAYMENT_FAILED],
            OrderStatus.CANCELLED,
            comment=f"cancelled: {reason}",
            changed_by=changed_by,
            now=self.clock(),
            changes={"cancellation_reason": reason},
            event=order_cancelled_event,
        )
        cancelled = result.unwrap()
        logger.info(f"Order {order_id} cancelled: {reason}")
        await self._dispatch()
        return cancelled

    # ====================
    # Queries
    # ====================

    async def get_order(self, order_id: str) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def get_status_history(self, order_id: str) -> List[OrderStatusHistory]:
        await self.get_order(order_id)
        return await self.repository.get_status_history(order_id)

    async def list_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        return await self.repository.list_user_orders(user_id, limit, offset)

    async def get_order_events(self, order_id: str) -> List[OrderEvent]:
        await self.get_order(order_id)
        return await self.repository.get_order_events(order_id)

    async def _dispatch(self) -> None:
        """Publish committed outbox rows; rows left behind go out on the dispatcher's next pass"""
        if self.outbox is None:
            return
        try:
            await self.outbox.dispatch_pending()
        except TransientInfraError as e:
            logger.warning(f"Outbox dispatch deferred: {e}")
