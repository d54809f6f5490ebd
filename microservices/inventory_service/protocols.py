"""
Inventory Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.

Every mutating method is atomic: it either applies completely (counters,
status and ledger rows in one transaction) or returns a failed Result and
changes nothing.
"""
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from core.errors import Result

from .models import (
    AdjustmentOutcome, AlertSeverity, AlertStatus, AlertType, ChangeType,
    InventoryAlert, InventoryChange, Product, Reservation, ReservationStatus,
    StockInfo,
)


@runtime_checkable
class InventoryRepositoryProtocol(Protocol):

    # Products and stock

    async def create_product(self, product: Product, initial_quantity: int) -> Result[Product]:
        """Insert product and one stock row per variant (or base row); conflict if it exists"""
        ...

    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    async def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> Optional[StockInfo]:
        ...

    async def list_stock(self, product_id: str) -> List[StockInfo]:
        ...

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
        """
        Conditionally apply `delta` to quantity and append one ledger row.

        Fails with InsufficientStockError when quantity + delta < reserved.
        A rollback already recorded for (reference_id, product, variant)
        succeeds without change and returns `change=None`.
        """
        ...

    async def get_inventory_changes(
        self, product_id: str, variant_id: Optional[str] = None, limit: int = 100
    ) -> List[InventoryChange]:
        ...

    # Reservations

    async def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        """Raise `reserved` for every item (bounded by available) and insert, all or nothing"""
        ...

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        ...

    async def transition_reservation(
        self,
        reservation_id: str,
        to_status: ReservationStatus,
        now: datetime,
        reference_id: Optional[str] = None,
    ) -> Result[Reservation]:
        """
        Guarded `active -> to_status`.

        USED turns the hold into a permanent decrement and records one
        ledger row per item tagged with `reference_id`; USED also requires
        `expires_at > now`. EXPIRED and CANCELLED release the hold.
        A reservation no longer active (or overdue, for USED) fails with
        ConflictError and nothing changes.
        """
        ...

    async def list_reservations(
        self, owner_id: str, status: Optional[ReservationStatus] = None, limit: int = 50
    ) -> List[Reservation]:
        ...

    async def list_overdue_reservations(self, now: datetime, limit: int = 100) -> List[Reservation]:
        ...

    # Alerts

    async def get_open_alert(
        self, product_id: str, variant_id: Optional[str], alert_type: AlertType
    ) -> Optional[InventoryAlert]:
        ...

    async def create_alert(self, alert: InventoryAlert) -> Result[InventoryAlert]:
        """Conflict if an open alert already exists for (product, variant, type)"""
        ...

    async def update_open_alert(
        self, alert_id: str, current_stock: int, severity: AlertSeverity, message: str, now: datetime
    ) -> Result[InventoryAlert]:
        ...

    async def transition_alert(
        self,
        alert_id: str,
        from_statuses: Sequence[AlertStatus],
        to_status: AlertStatus,
        now: datetime,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Result[InventoryAlert]:
        ...

    async def get_alert(self, alert_id: str) -> Optional[InventoryAlert]:
        ...

    async def list_open_alerts(self, limit: int = 50, offset: int = 0) -> List[InventoryAlert]:
        ...

    async def list_alerts_by_product(self, product_id: str, include_closed: bool = False) -> List[InventoryAlert]:
        ...
