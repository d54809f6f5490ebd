"""
Inventory Repository

Data access layer for inventory operations using PostgresClient.
Matches schema: inventory.products, inventory.stock_levels,
inventory.inventory_changes, inventory.reservations, inventory.alerts

Counter updates are single conditional UPDATE ... RETURNING statements, so
concurrent requests against the same row serialize on the row lock and the
losing request sees its condition fail instead of overwriting.
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from core.errors import (
    ConflictError, InsufficientStockError, NotFoundError, Result, ServiceError,
)
from core.postgres_client import PostgresClient

from .models import (
    AdjustmentOutcome, AlertSeverity, AlertStatus, AlertType, ChangeType,
    InventoryAlert, InventoryChange, OPEN_ALERT_STATUSES, Product, Reservation,
    ReservationStatus, StockInfo,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def _vkey(variant_id: Optional[str]) -> str:
    return variant_id or ""


def _variant(value: Optional[str]) -> Optional[str]:
    return value or None


class InventoryRepository:
    """
    Repository for inventory data operations.

    Tables:
        - inventory.products: catalogue with typed attributes
        - inventory.stock_levels: quantity/reserved per product variant
        - inventory.inventory_changes: append-only adjustment ledger
        - inventory.reservations: time-boxed holds (multi-item)
        - inventory.alerts: low / out-of-stock alerts
    """

    def __init__(self, db: PostgresClient):
        self.db = db
        self.schema = "inventory"

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.apply_migrations(MIGRATIONS_DIR)

    # =========================================================================
    # Products and stock
    # =========================================================================

    async def create_product(self, product: Product, initial_quantity: int) -> Result[Product]:
        try:
            async with self.db.transaction() as conn:
                await conn.execute(
                    f'''INSERT INTO {self.schema}.products
                        (product_id, name, category, attributes, variants, low_stock_threshold, created_at)
                        VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7)''',
                    product.product_id,
                    product.name,
                    product.category,
                    product.attributes.model_dump_json(),
                    json.dumps([v.model_dump(mode="json") for v in product.variants]),
                    product.low_stock_threshold,
                    product.created_at,
                )
                for variant_id in product.stock_keys():
                    await conn.execute(
                        f'''INSERT INTO {self.schema}.stock_levels
                            (product_id, variant_id, quantity, reserved, low_stock_threshold, updated_at)
                            VALUES ($1, $2, $3, 0, $4, $5)''',
                        product.product_id,
                        _vkey(variant_id),
                        initial_quantity,
                        product.threshold_for(variant_id),
                        product.created_at,
                    )
        except asyncpg.UniqueViolationError:
            return Result.failure(ConflictError(f"Product {product.product_id} already exists"))
        return Result.success(product)

    async def get_product(self, product_id: str) -> Optional[Product]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.products WHERE product_id = $1', product_id
        )
        if not row:
            return None
        return Product.model_validate({
            "product_id": row["product_id"],
            "name": row["name"],
            "attributes": self._json(row["attributes"]),
            "variants": self._json(row["variants"]),
            "low_stock_threshold": row["low_stock_threshold"],
            "created_at": row["created_at"],
        })

    async def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> Optional[StockInfo]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.stock_levels WHERE product_id = $1 AND variant_id = $2',
            product_id, _vkey(variant_id),
        )
        return self._stock(row) if row else None

    async def list_stock(self, product_id: str) -> List[StockInfo]:
        rows = await self.db.query(
            f'SELECT * FROM {self.schema}.stock_levels WHERE product_id = $1 ORDER BY variant_id',
            product_id,
        )
        return [self._stock(r) for r in rows]

    async def apply_adjustment(
        self,
        product_id: str,
        variant_id: Optional[str],
        delta: int,
        change_type: ChangeType,
        reason: str,
        reference_id: Optional[str],
        user_id: Optional[str],
        now: datetime,
    ) -> Result[AdjustmentOutcome]:
        try:
            async with self.db.transaction() as conn:
                if change_type == ChangeType.ROLLBACK and await self._rollback_recorded(
                    conn, reference_id, product_id, variant_id
                ):
                    return await self._deduplicated(product_id, variant_id, reference_id)

                row = await conn.fetchrow(
                    f'''UPDATE {self.schema}.stock_levels
                        SET quantity = quantity + $3, updated_at = $4
                        WHERE product_id = $1 AND variant_id = $2 AND quantity + $3 >= reserved
                        RETURNING *''',
                    product_id, _vkey(variant_id), delta, now,
                )
                if row is None:
                    raise await self._stock_failure(conn, product_id, variant_id, -delta)

                stock = self._stock(row)
                change = await self._insert_change(
                    conn, stock, delta, change_type, reason, reference_id, user_id, now,
                    previous_reserved=stock.reserved,
                )
        except (InsufficientStockError, NotFoundError) as e:
            return Result.failure(e)
        except asyncpg.UniqueViolationError:
            # Concurrent duplicate rollback lost the unique index race
            return await self._deduplicated(product_id, variant_id, reference_id)

        return Result.success(AdjustmentOutcome(stock=stock, change=change))

    async def get_inventory_changes(
        self, product_id: str, variant_id: Optional[str] = None, limit: int = 100
    ) -> List[InventoryChange]:
        if variant_id is None:
            rows = await self.db.query(
                f'''SELECT * FROM {self.schema}.inventory_changes WHERE product_id = $1
                    ORDER BY created_at, change_id LIMIT {int(limit)}''',
                product_id,
            )
        else:
            rows = await self.db.query(
                f'''SELECT * FROM {self.schema}.inventory_changes WHERE product_id = $1 AND variant_id = $2
                    ORDER BY created_at, change_id LIMIT {int(limit)}''',
                product_id, variant_id,
            )
        return [self._change(r) for r in rows]

    # =========================================================================
    # Reservations
    # =========================================================================

    async def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        try:
            async with self.db.transaction() as conn:
                for item in reservation.items:
                    row = await conn.fetchrow(
                        f'''UPDATE {self.schema}.stock_levels
                            SET reserved = reserved + $3, updated_at = $4
                            WHERE product_id = $1 AND variant_id = $2 AND quantity - reserved >= $3
                            RETURNING product_id''',
                        item.product_id, _vkey(item.variant_id), item.quantity, reservation.created_at,
                    )
                    if row is None:
                        raise await self._stock_failure(conn, item.product_id, item.variant_id, item.quantity)

                await conn.execute(
                    f'''INSERT INTO {self.schema}.reservations
                        (reservation_id, owner_id, owner_type, session_id, items, status,
                         reference_id, expires_at, created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $9)''',
                    reservation.reservation_id,
                    reservation.owner_id,
                    reservation.owner_type.value,
                    reservation.session_id,
                    json.dumps([i.model_dump(mode="json") for i in reservation.items]),
                    reservation.status.value,
                    reservation.reference_id,
                    reservation.expires_at,
                    reservation.created_at,
                )
        except (InsufficientStockError, NotFoundError) as e:
            return Result.failure(e)
        return Result.success(reservation)

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        row = await self.db.query_row(
            f'SELECT * FROM {self.schema}.reservations WHERE reservation_id = $1', reservation_id
        )
        return self._reservation(row) if row else None

    async def transition_reservation(
        self,
        reservation_id: str,
        to_status: ReservationStatus,
        now: datetime,
        reference_id: Optional[str] = None,
    ) -> Result[Reservation]:
        try:
            async with self.db.transaction() as conn:
                if to_status == ReservationStatus.USED:
                    row = await conn.fetchrow(
                        f'''UPDATE {self.schema}.reservations
                            SET status = $2, reference_id = $3, updated_at = $4
                            WHERE reservation_id = $1 AND status = 'active' AND expires_at > $4
                            RETURNING *''',
                        reservation_id, to_status.value, reference_id, now,
                    )
                else:
                    row = await conn.fetchrow(
                        f'''UPDATE {self.schema}.reservations
                            SET status = $2, updated_at = $3
                            WHERE reservation_id = $1 AND status = 'active'
                            RETURNING *''',
                        reservation_id, to_status.value, now,
                    )
                if row is None:
                    raise await self._reservation_conflict(conn, reservation_id, to_status, now)

                reservation = self._reservation(row)
                for item in reservation.items:
                    if to_status == ReservationStatus.USED:
                        stock_row = await conn.fetchrow(
                            f'''UPDATE {self.schema}.stock_levels
                                SET quantity = quantity - $3, reserved = reserved - $3, updated_at = $4
                                WHERE product_id = $1 AND variant_id = $2
                                RETURNING *''',
                            item.product_id, _vkey(item.variant_id), item.quantity, now,
                        )
                        await self._insert_change(
                            conn, self._stock(stock_row), -item.quantity, ChangeType.DECREMENT,
                            f"reservation {reservation_id} confirmed", reference_id, reservation.owner_id, now,
                            previous_reserved=stock_row["reserved"] + item.quantity,
                        )
                    else:
                        await conn.execute(
                            f'''UPDATE {self.schema}.stock_levels
                                SET reserved = reserved - $3, updated_at = $4
                                WHERE product_id = $1 AND variant_id = $2''',
                            item.product_id, _vkey(item.variant_id), item.quantity, now,
                        )
        except (ConflictError, NotFoundError) as e:
            return Result.failure(e)
        return Result.success(reservation)

    async def list_reservations(
        self, owner_id: str, status: Optional[ReservationStatus] = None, limit: int = 50
    ) -> List[Reservation]:
        if status:
            rows = await self.db.query(
                f'''SELECT * FROM {self.schema}.reservations WHERE owner_id = $1 AND status = $2
                    ORDER BY created_at DESC LIMIT {int(limit)}''',
                owner_id, status.value,
            )
        else:
            rows = await self.db.query(
                f'''SELECT * FROM {self.schema}.reservations WHERE owner_id = $1
                    ORDER BY created_at DESC LIMIT {int(limit)}''',
                owner_id,
            )
        return [self._reservation(r) for r in rows]

    async def list_overdue_reservations(self, now: datetime, limit: int = 100) -> List[Reservation]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.reservations
                WHERE status = 'active' AND expires_at <= $1
                ORDER BY expires_at LIMIT {int(limit)}''',
            now,
        )
        return [self._reservation(r) for r in rows]

    # =========================================================================
    # Alerts
    # =========================================================================

    async def get_open_alert(
        self, product_id: str, variant_id: Optional[str], alert_type: AlertType
    ) -> Optional[InventoryAlert]:
        row = await self.db.query_row(
            f'''SELECT * FROM {self.schema}.alerts
                WHERE product_id = $1 AND variant_id = $2 AND alert_type = $3
                  AND status IN ('created', 'notified')''',
            product_id, _vkey(variant_id), alert_type.value,
        )
        return self._alert(row) if row else None

    async def create_alert(self, alert: InventoryAlert) -> Result[InventoryAlert]:
        try:
            await self.db.execute(
                f'''INSERT INTO {self.schema}.alerts
                    (alert_id, product_id, product_name, variant_id, alert_type, severity, status,
                     current_stock, threshold, message, suggested_action, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $12)''',
                alert.alert_id, alert.product_id, alert.product_name, _vkey(alert.variant_id),
                alert.alert_type.value, alert.severity.value, alert.status.value,
                alert.current_stock, alert.threshold, alert.message, alert.suggested_action,
                alert.created_at,
            )
        except asyncpg.UniqueViolationError:
            return Result.failure(ConflictError(
                f"Open {alert.alert_type.value} alert already exists for {alert.product_id}"
            ))
        return Result.success(alert)

    async def update_open_alert(
        self, alert_id: str, current_stock: int, severity: AlertSeverity, message: str, now: datetime
    ) -> Result[InventoryAlert]:
        row = await self.db.query_row(
            f'''UPDATE {self.schema}.alerts
                SET current_stock = $2, severity = $3, message = $4, updated_at = $5
                WHERE alert_id = $1 AND status IN ('created', 'notified')
                RETURNING *''',
            alert_id, current_stock, severity.value, message, now,
        )
        if row is None:
            return Result.failure(ConflictError(f"Alert {alert_id} is no longer open"))
        return Result.success(self._alert(row))

    async def transition_alert(
        self,
        alert_id: str,
        from_statuses: Sequence[AlertStatus],
        to_status: AlertStatus,
        now: datetime,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Result[InventoryAlert]:
        closing = to_status not in OPEN_ALERT_STATUSES
        row = await self.db.query_row(
            f'''UPDATE {self.schema}.alerts
                SET status = $2,
                    updated_at = $3,
                    notified_at = CASE WHEN $2 = 'notified' THEN $3 ELSE notified_at END,
                    resolved_at = CASE WHEN $4 THEN $3 ELSE resolved_at END,
                    resolved_by = CASE WHEN $4 THEN $5 ELSE resolved_by END,
                    resolution_notes = CASE WHEN $4 THEN $6 ELSE resolution_notes END
                WHERE alert_id = $1 AND status = ANY($7::text[])
                RETURNING *''',
            alert_id, to_status.value, now, closing, resolved_by, notes,
            [s.value for s in from_statuses],
        )
        if row is None:
            current = await self.get_alert(alert_id)
            if current is None:
                return Result.failure(NotFoundError(f"Alert {alert_id} not found"))
            return Result.failure(ConflictError(
                f"Alert {alert_id} is {current.status.value}, cannot move to {to_status.value}"
            ))
        return Result.success(self._alert(row))

    async def get_alert(self, alert_id: str) -> Optional[InventoryAlert]:
        row = await self.db.query_row(f'SELECT * FROM {self.schema}.alerts WHERE alert_id = $1', alert_id)
        return self._alert(row) if row else None

    async def list_open_alerts(self, limit: int = 50, offset: int = 0) -> List[InventoryAlert]:
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.alerts WHERE status IN ('created', 'notified')
                ORDER BY created_at DESC, alert_id LIMIT {int(limit)} OFFSET {int(offset)}'''
        )
        return [self._alert(r) for r in rows]

    async def list_alerts_by_product(self, product_id: str, include_closed: bool = False) -> List[InventoryAlert]:
        status_filter = "" if include_closed else "AND status IN ('created', 'notified')"
        rows = await self.db.query(
            f'''SELECT * FROM {self.schema}.alerts WHERE product_id = $1 {status_filter}
                ORDER BY created_at DESC''',
            product_id,
        )
        return [self._alert(r) for r in rows]

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _rollback_recorded(self, conn, reference_id, product_id, variant_id) -> bool:
        row = await conn.fetchrow(
            f'''SELECT 1 FROM {self.schema}.inventory_changes
                WHERE reference_id = $1 AND change_type = 'rollback'
                  AND product_id = $2 AND variant_id = $3''',
            reference_id, product_id, _vkey(variant_id),
        )
        return row is not None

    async def _deduplicated(self, product_id, variant_id, reference_id) -> Result[AdjustmentOutcome]:
        logger.info(f"Rollback for {reference_id} on {product_id}/{_vkey(variant_id)} already applied")
        stock = await self.get_stock(product_id, variant_id)
        return Result.success(AdjustmentOutcome(stock=stock, change=None))

    async def _stock_failure(self, conn, product_id, variant_id, requested: int) -> ServiceError:
        row = await conn.fetchrow(
            f'SELECT quantity, reserved FROM {self.schema}.stock_levels WHERE product_id = $1 AND variant_id = $2',
            product_id, _vkey(variant_id),
        )
        if row is None:
            return NotFoundError(f"No stock record for product {product_id} variant {_vkey(variant_id) or '-'}")
        available = row["quantity"] - row["reserved"]
        return InsufficientStockError(
            f"Insufficient stock for {product_id}: requested {requested}, available {available}",
            details={"product_id": product_id, "variant_id": variant_id, "available": available},
        )

    async def _reservation_conflict(self, conn, reservation_id, to_status, now) -> ServiceError:
        row = await conn.fetchrow(
            f'SELECT status, expires_at FROM {self.schema}.reservations WHERE reservation_id = $1',
            reservation_id,
        )
        if row is None:
            return NotFoundError(f"Reservation {reservation_id} not found")
        state = row["status"]
        if state == ReservationStatus.ACTIVE.value and row["expires_at"] <= now:
            state = ReservationStatus.EXPIRED.value
        return ConflictError(
            f"Reservation {reservation_id} is {state}, cannot move to {to_status.value}",
            details={"status": state},
        )

    async def _insert_change(
        self, conn, stock: StockInfo, delta: int, change_type: ChangeType, reason: str,
        reference_id: Optional[str], user_id: Optional[str], now: datetime, previous_reserved: int,
    ) -> InventoryChange:
        change = InventoryChange(
            change_id=f"chg_{uuid.uuid4().hex[:16]}",
            product_id=stock.product_id,
            variant_id=stock.variant_id,
            change_type=change_type,
            quantity=delta,
            reason=reason,
            reference_id=reference_id,
            user_id=user_id,
            previous_quantity=stock.quantity - delta,
            new_quantity=stock.quantity,
            previous_reserved=previous_reserved,
            new_reserved=stock.reserved,
            created_at=now,
        )
        await conn.execute(
            f'''INSERT INTO {self.schema}.inventory_changes
                (change_id, product_id, variant_id, change_type, quantity, reason, reference_id, user_id,
                 previous_quantity, new_quantity, previous_reserved, new_reserved, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)''',
            change.change_id, change.product_id, _vkey(change.variant_id), change.change_type.value,
            change.quantity, change.reason, change.reference_id, change.user_id,
            change.previous_quantity, change.new_quantity, change.previous_reserved,
            change.new_reserved, change.created_at,
        )
        return change

    @staticmethod
    def _json(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    @staticmethod
    def _stock(row: Dict[str, Any]) -> StockInfo:
        return StockInfo(
            product_id=row["product_id"],
            variant_id=_variant(row["variant_id"]),
            quantity=row["quantity"],
            reserved=row["reserved"],
            low_stock_threshold=row["low_stock_threshold"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _change(row: Dict[str, Any]) -> InventoryChange:
        data = dict(row)
        data["variant_id"] = _variant(data.get("variant_id"))
        return InventoryChange.model_validate(data)

    def _reservation(self, row: Dict[str, Any]) -> Reservation:
        data = dict(row)
        data["items"] = self._json(data.get("items")) or []
        return Reservation.model_validate(data)

    @staticmethod
    def _alert(row: Dict[str, Any]) -> InventoryAlert:
        data = dict(row)
        data["variant_id"] = _variant(data.get("variant_id"))
        return InventoryAlert.model_validate(data)
