"""
Inventory Alert Monitor

Evaluates stock after every ledger adjustment and keeps at most one open
alert per (product, variant, alert type). An open alert is updated in place;
closed alerts never reopen, a later breach creates a new alert. A periodic
notification pass (off unless an interval is configured) reports alerts still
in Created and moves them to Notified.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from core.errors import NotFoundError, TransientInfraError
from core.messages import utcnow

from .models import (
    AlertSeverity, AlertStatus, AlertType, InventoryAlert, StockInfo,
)
from .protocols import InventoryRepositoryProtocol

logger = logging.getLogger(__name__)


def classify(available: int, threshold: int) -> Optional[tuple]:
    """Map available stock to (alert_type, severity), or None when healthy"""
    if available <= 0:
        return AlertType.OUT_OF_STOCK, AlertSeverity.CRITICAL
    if threshold <= 0 or available > threshold:
        return None
    ratio = available / threshold
    if ratio <= 0.25:
        return AlertType.LOW_STOCK, AlertSeverity.HIGH
    if ratio <= 0.5:
        return AlertType.LOW_STOCK, AlertSeverity.MEDIUM
    return AlertType.LOW_STOCK, AlertSeverity.LOW


def _describe(alert_type: AlertType, product_name: str, available: int, threshold: int) -> tuple:
    if alert_type == AlertType.OUT_OF_STOCK:
        return (
            f"{product_name} is out of stock",
            "Restock immediately; the product can no longer be reserved",
        )
    return (
        f"{product_name} is low on stock: {available} available (threshold {threshold})",
        f"Reorder at least {max(threshold * 2 - available, 1)} units",
    )


@dataclass
class AlertEvaluation:
    alert: InventoryAlert
    created: bool


class AlertService:

    def __init__(
        self,
        repository: InventoryRepositoryProtocol,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.clock = clock
        self._monitor: Optional[asyncio.Task] = None

    async def evaluate(self, stock: StockInfo, product_name: str = "") -> Optional[AlertEvaluation]:
        verdict = classify(stock.available, stock.low_stock_threshold)
        if verdict is None:
            return None
        alert_type, severity = verdict
        now = self.clock()
        name = product_name or stock.product_id
        message, suggested_action = _describe(alert_type, name, stock.available, stock.low_stock_threshold)

        existing = await self.repository.get_open_alert(stock.product_id, stock.variant_id, alert_type)
        if existing is not None:
            result = await self.repository.update_open_alert(
                existing.alert_id, stock.available, severity, message, now
            )
            if result.ok:
                return AlertEvaluation(alert=result.value, created=False)
            # Closed between read and update: a new breach gets a new alert

        alert = InventoryAlert(
            alert_id=f"alert_{uuid.uuid4().hex[:12]}",
            product_id=stock.product_id,
            product_name=name,
            variant_id=stock.variant_id,
            alert_type=alert_type,
            severity=severity,
            current_stock=stock.available,
            threshold=stock.low_stock_threshold,
            message=message,
            suggested_action=suggested_action,
            created_at=now,
        )
        result = await self.repository.create_alert(alert)
        if result.ok:
            logger.info(f"Created {alert_type.value} alert {alert.alert_id} for {stock.product_id} ({severity.value})")
            return AlertEvaluation(alert=result.value, created=True)

        # Lost the race to a concurrent evaluation; fold into the winner
        winner = await self.repository.get_open_alert(stock.product_id, stock.variant_id, alert_type)
        if winner is None:
            return None
        updated = await self.repository.update_open_alert(winner.alert_id, stock.available, severity, message, now)
        return AlertEvaluation(alert=updated.value, created=False) if updated.ok else None

    async def resolve_alert(self, alert_id: str, user_id: str, notes: Optional[str] = None) -> InventoryAlert:
        result = await self.repository.transition_alert(
            alert_id,
            from_statuses=(AlertStatus.CREATED, AlertStatus.NOTIFIED),
            to_status=AlertStatus.RESOLVED,
            now=self.clock(),
            resolved_by=user_id,
            notes=notes,
        )
        alert = result.unwrap()
        logger.info(f"Alert {alert_id} resolved by {user_id}")
        return alert

    async def ignore_alert(self, alert_id: str, user_id: str, notes: Optional[str] = None) -> InventoryAlert:
        result = await self.repository.transition_alert(
            alert_id,
            from_statuses=(AlertStatus.CREATED, AlertStatus.NOTIFIED),
            to_status=AlertStatus.IGNORED,
            now=self.clock(),
            resolved_by=user_id,
            notes=notes,
        )
        return result.unwrap()

    async def mark_notified(self, alert_id: str) -> InventoryAlert:
        result = await self.repository.transition_alert(
            alert_id,
            from_statuses=(AlertStatus.CREATED,),
            to_status=AlertStatus.NOTIFIED,
            now=self.clock(),
        )
        return result.unwrap()

    async def notify_pending_alerts(self, batch_size: int = 100) -> int:
        """Report every alert still in Created and mark it notified; returns how many"""
        pending = []
        offset = 0
        while True:
            page = await self.repository.list_open_alerts(limit=batch_size, offset=offset)
            pending.extend(a for a in page if a.status == AlertStatus.CREATED)
            if len(page) < batch_size:
                break
            offset += batch_size

        notified = 0
        for alert in pending:
            result = await self.repository.transition_alert(
                alert.alert_id,
                from_statuses=(AlertStatus.CREATED,),
                to_status=AlertStatus.NOTIFIED,
                now=self.clock(),
            )
            if not result.ok:
                # Resolved or ignored since the listing
                continue
            logger.warning(
                f"Inventory alert {alert.alert_id} [{alert.severity.value}] {alert.message}. {alert.suggested_action}"
            )
            notified += 1
        if notified:
            logger.info(f"Notified {notified} inventory alert(s)")
        return notified

    # Background notification (disabled unless an interval is configured)

    def start_monitor(self, interval_seconds: float) -> None:
        if interval_seconds <= 0 or (self._monitor and not self._monitor.done()):
            return
        self._monitor = asyncio.create_task(self._monitor_forever(interval_seconds), name="alert-monitor")

    async def stop_monitor(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            await asyncio.gather(self._monitor, return_exceptions=True)
            self._monitor = None

    async def _monitor_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.notify_pending_alerts()
            except TransientInfraError as e:
                logger.warning(f"Alert notification pass skipped: {e}")

    async def get_alert(self, alert_id: str) -> InventoryAlert:
        alert = await self.repository.get_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    async def list_active_alerts(self, page: int = 1, page_size: int = 20) -> List[InventoryAlert]:
        page = max(page, 1)
        return await self.repository.list_open_alerts(limit=page_size, offset=(page - 1) * page_size)

    async def get_alerts_by_product(self, product_id: str, include_resolved: bool = False) -> List[InventoryAlert]:
        return await self.repository.list_alerts_by_product(product_id, include_closed=include_resolved)
