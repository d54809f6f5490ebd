"""
Order Repository

Data access layer for order management operations using PostgresClient.
Matches schema: orders.carts, orders.orders, orders.order_items,
orders.status_history, orders.outbox_events, orders.processed_messages
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from core.errors import ConflictError, DuplicateMessageError, NotFoundError, Result
from core.outbox import OutboxEntry, PostgresOutboxStore
from core.postgres_client import PostgresClient

from .models import (
    Cart, CartStatus, Order, OrderEvent, OrderItem, OrderStatus, OrderStatusHistory,
)
from .protocols import OrderEventBuilder

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Columns a status transition may set alongside the status
_UPDATABLE = ("payment_id", "cancellation_reason")


class OrderRepository:
    """
    Repository for order data operations

    Handles all database operations for orders using PostgresClient.
    """

    def __init__(self, db: PostgresClient):
        self.db = db
        # "orders" instead of "order" (reserved keyword)
        self.schema = "orders"
        self.outbox = PostgresOutboxStore(db, self.schema)

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.apply_migrations(MIGRATIONS_DIR)

    # ====================
    # Carts
    # ====================

    async def save_cart(self, cart: Cart) -> Cart:
        await self.db.execute(
            f'''INSERT INTO {self.schema}.carts (cart_id, user_id, status, items, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, $5, $6)
                ON CONFLICT (cart_id) DO UPDATE
                SET status = EXCLUDED.status, items = EXCLUDED.items, updated_at = EXCLUDED.updated_at''',
            cart.cart_id,
            cart.user_id,
            cart.status.value,
            json.dumps([i.model_dump(mode="json") for i in cart.items]),
            cart.created_at,
            cart.updated_at,
        )
        return cart

    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.carts WHERE cart_id = $1', cart_id
        )
        if not row:
            return None
        row["items"] = self._json(row["items"]) or []
        return Cart.model_validate(row)

    # ====================
    # Orders
    # ====================

    async def create_order_with_outbox(
        self, order: Order, history: OrderStatusHistory, event: OutboxEntry, cart_id: str
    ) -> Result[Order]:
        try:
            async with self.db.transaction() as conn:
                cart_row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.carts SET status = $2, updated_at = $3
                        WHERE cart_id = $1 AND status = $4 RETURNING cart_id''',
                    cart_id, CartStatus.ORDERED.value, order.created_at, CartStatus.ACTIVE.value,
                )
                if cart_row is None:
                    raise ConflictError(f"Cart {cart_id} is no longer active")

                await conn.execute(
                    f'''INSERT INTO {self.schema}.orders
                        (order_id, order_number, user_id, cart_id, status, total_amount, currency,
                         shipping_address, created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $9)''',
                    order.order_id,
                    order.order_number,
                    order.user_id,
                    cart_id,
                    order.status.value,
                    order.total_amount,
                    order.currency,
                    order.shipping_address.model_dump_json() if order.shipping_address else None,
                    order.created_at,
                )
                await conn.executemany(
                    f'''INSERT INTO {self.schema}.order_items
                        (item_id, order_id, product_id, variant_id, product_name, unit_price,
                         quantity, reservation_id, position)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)''',
                    [
                        (i.item_id, i.order_id, i.product_id, i.variant_id, i.product_name,
                         i.unit_price, i.quantity, i.reservation_id, position)
                        for position, i in enumerate(order.items)
                    ],
                )
                await self._insert_history(conn, history)
                await self.outbox.add(conn, event)
        except ConflictError as e:
            return Result.failure(e)
        except asyncpg.UniqueViolationError:
            return Result.failure(ConflictError(f"Order {order.order_id} already exists"))
        return Result.success(order)

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.orders WHERE order_id = $1', order_id
        )
        if not row:
            return None
        items = await self.db.query(
            f'SELECT * FROM {self.schema}.order_items WHERE order_id = $1 ORDER BY position',
            order_id,
        )
        return self._order(row, items)

    async def list_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.orders WHERE user_id = $1
                ORDER BY created_at DESC LIMIT {int(limit)} OFFSET {int(offset)}''',
            user_id,
        )
        if not rows:
            return []
        items = await self.db.query(
            f'''SELECT * FROM {self.schema}.order_items WHERE order_id = ANY($1::text[])
                ORDER BY order_id, position''',
            [r["order_id"] for r in rows],
        )
        by_order: Dict[str, List[Dict[str, Any]]] = {}
        for item in items:
            by_order.setdefault(item["order_id"], []).append(item)
        return [self._order(r, by_order.get(r["order_id"], [])) for r in rows]

    async def get_status_history(self, order_id: str) -> List[OrderStatusHistory]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.status_history WHERE order_id = $1
                ORDER BY changed_at, history_id''',
            order_id,
        )
        return [OrderStatusHistory.model_validate(r) for r in rows]

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
        changes = {k: v for k, v in (changes or {}).items() if k in _UPDATABLE}
        assignments = "".join(f", {column} = ${i}" for i, column in enumerate(changes, start=5))
        try:
            async with self.db.transaction() as conn:
                if message_id is not None:
                    await conn.execute(
                        f'''INSERT INTO {self.schema}.processed_messages (message_id, handler, processed_at)
                            VALUES ($1, $2, $3)''',
                        message_id, handler, now,
                    )

                previous = await conn.fetchrow(
                    f'SELECT status FROM {self.schema}.orders WHERE order_id = $1 FOR UPDATE', order_id
                )
                if previous is None:
                    raise NotFoundError(f"Order {order_id} not found")
                row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.orders
                        SET status = $2, updated_at = $3{assignments}
                        WHERE order_id = $1 AND status = ANY($4::text[])
                        RETURNING *''',
                    order_id, to_status.value, now, [s.value for s in from_statuses], *changes.values(),
                )
                if row is None:
                    raise ConflictError(
                        f"Order {order_id} is {previous['status']}, cannot move to {to_status.value}",
                        details={"status": previous["status"], "target": to_status.value},
                    )

                await self._insert_history(conn, OrderStatusHistory(
                    history_id=f"hist_{uuid.uuid4().hex[:16]}",
                    order_id=order_id,
                    status=to_status,
                    previous_status=OrderStatus(previous["status"]),
                    comment=comment,
                    changed_by=changed_by,
                    changed_at=now,
                ))
                items = await conn.fetch(
                    f'SELECT * FROM {self.schema}.order_items WHERE order_id = $1 ORDER BY position',
                    order_id,
                )
                order = self._order(dict(row), [dict(i) for i in items])
                if event is not None:
                    entry = event(order)
                    if entry is not None:
                        await self.outbox.add(conn, entry)
        except (ConflictError, NotFoundError) as e:
            return Result.failure(e)
        except asyncpg.UniqueViolationError:
            return Result.failure(DuplicateMessageError(f"Message {message_id} already processed"))
        return Result.success(order)

    # ====================
    # Inbox
    # ====================

    async def is_message_processed(self, message_id: str) -> bool:
        row = await self.db.query_row(
            f'SELECT 1 AS seen FROM {self.schema}.processed_messages WHERE message_id = $1', message_id
        )
        return row is not None

    async def mark_message_processed(self, message_id: str, handler: str) -> bool:
        status = await self.db.execute(
            f'''INSERT INTO {self.schema}.processed_messages (message_id, handler)
                VALUES ($1, $2) ON CONFLICT (message_id) DO NOTHING''',
            message_id, handler,
        )
        return status.endswith(" 1")

    # ====================
    # Outbox
    # ====================

    async def get_order_events(self, order_id: str) -> List[OrderEvent]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.outbox_events WHERE aggregate_id = $1
                ORDER BY created_at, event_id''',
            order_id,
        )
        for r in rows:
            r["payload"] = self._json(r["payload"])
        return [OrderEvent.model_validate(r) for r in rows]

    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        return await self.outbox.fetch_pending_events(limit)

    async def mark_event_dispatched(self, event_id: str) -> None:
        await self.outbox.mark_event_dispatched(event_id)

    async def record_event_failure(self, event_id: str, error: str) -> None:
        await self.outbox.record_event_failure(event_id, error)

    async def park_event(self, event_id: str, error: str) -> None:
        await self.outbox.park_event(event_id, error)

    # ====================
    # Helpers
    # ====================

    async def _insert_history(self, conn, history: OrderStatusHistory) -> None:
        await conn.execute(
            f'''INSERT INTO {self.schema}.status_history
                (history_id, order_id, status, previous_status, comment, changed_by, changed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)''',
            history.history_id,
            history.order_id,
            history.status.value,
            history.previous_status.value if history.previous_status else None,
            history.comment,
            history.changed_by,
            history.changed_at,
        )

    @staticmethod
    def _json(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    def _order(self, row: Dict[str, Any], items: List[Dict[str, Any]]) -> Order:
        data = dict(row)
        data.pop("cart_id", None)
        data["shipping_address"] = self._json(data.get("shipping_address"))
        data["items"] = [OrderItem.model_validate(self._item(i)) for i in items]
        return Order.model_validate(data)

    @staticmethod
    def _item(row: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(row)
        data.pop("position", None)
        return data
