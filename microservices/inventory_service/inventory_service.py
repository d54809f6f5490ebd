"""
Inventory Service Business Logic

Stock ledger: products, atomic stock adjustments with an append-only change
log, and idempotent compensation (rollback) keyed by reference id.
"""

import logging
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from core.errors import NotFoundError, ValidationError
from core.messages import utcnow

from .alert_service import AlertService
from .events.publishers import publish_inventory_low, publish_inventory_updated
from .models import (
    AdjustmentOutcome, ChangeType, InventoryChange, Product, ProductCreateRequest,
    ReservationItem, StockInfo,
)
from .protocols import InventoryRepositoryProtocol

logger = logging.getLogger(__name__)

_SIGN_RULES = {
    ChangeType.INCREMENT: lambda d: d > 0,
    ChangeType.DECREMENT: lambda d: d < 0,
    ChangeType.ROLLBACK: lambda d: d > 0,
    ChangeType.ADJUSTMENT: lambda d: d != 0,
}


class InventoryService:
    """
    Stock ledger service

    Every successful adjustment publishes inventory.updated and runs the
    alert monitor; a low or out-of-stock verdict publishes inventory.low.
    """

    def __init__(
        self,
        repository: InventoryRepositoryProtocol,
        event_bus=None,
        alert_service: Optional[AlertService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.alert_service = alert_service or AlertService(repository, clock=clock)
        self.clock = clock

    # Products

    async def register_product(self, request: ProductCreateRequest) -> Product:
        product = Product(
            product_id=request.product_id or f"prod_{uuid.uuid4().hex[:12]}",
            name=request.name,
            attributes=request.attributes,
            variants=request.variants,
            low_stock_threshold=request.low_stock_threshold,
            created_at=self.clock(),
        )
        created = (await self.repository.create_product(product, request.initial_quantity)).unwrap()
        logger.info(f"Registered product {created.product_id} with {len(created.stock_keys())} stock rows")
        return created

    async def get_product(self, product_id: str) -> Product:
        product = await self.repository.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    async def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> StockInfo:
        stock = await self.repository.get_stock(product_id, variant_id)
        if stock is None:
            raise NotFoundError(f"No stock record for product {product_id} variant {variant_id or '-'}")
        return stock

    async def list_stock(self, product_id: str) -> List[StockInfo]:
        return await self.repository.list_stock(product_id)

    async def get_inventory_changes(
        self, product_id: str, variant_id: Optional[str] = None, limit: int = 100
    ) -> List[InventoryChange]:
        return await self.repository.get_inventory_changes(product_id, variant_id, limit)

    # Ledger

    async def adjust_stock(
        self,
        product_id: str,
        variant_id: Optional[str],
        delta: int,
        change_type: ChangeType,
        reason: str,
        reference_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[int, int]:
        """
        Atomically apply `delta` to the stock row and record the change.

        Returns:
            (new_quantity, new_reserved)

        Raises:
            ValidationError: delta sign does not match the change type
            NotFoundError: no stock row for product/variant
            InsufficientStockError: the decrement would make available negative
        """
        outcome = await self._adjust(product_id, variant_id, delta, change_type, reason, reference_id, user_id)
        return outcome.stock.quantity, outcome.stock.reserved

    async def rollback_inventory(
        self,
        reference_id: str,
        items: List[ReservationItem],
        reason: str = "order rollback",
        user_id: Optional[str] = None,
    ) -> List[AdjustmentOutcome]:
        """
        Compensate a confirmed decrement for `reference_id`.

        Each (product, variant) is incremented at most once per reference;
        redelivered compensations return the current stock unchanged.
        """
        merged: Dict[Tuple[str, Optional[str]], int] = OrderedDict()
        for item in items:
            key = (item.product_id, item.variant_id)
            merged[key] = merged.get(key, 0) + item.quantity

        outcomes = []
        for (product_id, variant_id), quantity in merged.items():
            outcomes.append(await self._adjust(
                product_id, variant_id, quantity, ChangeType.ROLLBACK, reason, reference_id, user_id
            ))
        applied = sum(1 for o in outcomes if o.applied)
        logger.info(f"Rollback for {reference_id}: {applied}/{len(outcomes)} lines applied")
        return outcomes

    async def _adjust(
        self,
        product_id: str,
        variant_id: Optional[str],
        delta: int,
        change_type: ChangeType,
        reason: str,
        reference_id: Optional[str],
        user_id: Optional[str],
    ) -> AdjustmentOutcome:
        if not _SIGN_RULES[change_type](delta):
            raise ValidationError(f"Invalid delta {delta} for {change_type.value} adjustment")
        if change_type == ChangeType.ROLLBACK and not reference_id:
            raise ValidationError("Rollback adjustments require a reference_id")

        result = await self.repository.apply_adjustment(
            product_id, variant_id, delta, change_type, reason, reference_id, user_id, self.clock()
        )
        outcome = result.unwrap()
        if outcome.applied:
            logger.info(
                f"Stock {product_id}/{variant_id or '-'} {change_type.value} {delta:+d}: "
                f"{outcome.change.previous_quantity} -> {outcome.change.new_quantity}"
            )
            await self._after_change(outcome.stock, delta, reason, reference_id, user_id)
        return outcome

    async def _after_change(
        self, stock: StockInfo, delta: int, reason: str,
        reference_id: Optional[str], user_id: Optional[str],
    ) -> None:
        product = await self.repository.get_product(stock.product_id)
        name = product.display_name(stock.variant_id) if product else stock.product_id

        await publish_inventory_updated(
            self.event_bus,
            product_id=stock.product_id,
            variant_id=stock.variant_id,
            product_name=name,
            new_quantity=stock.quantity,
            quantity_change=delta,
            reason=reason,
            reference_id=reference_id,
            user_id=user_id,
        )

        evaluation = await self.alert_service.evaluate(stock, product_name=name)
        if evaluation is not None:
            await publish_inventory_low(
                self.event_bus,
                product_id=stock.product_id,
                variant_id=stock.variant_id,
                product_name=name,
                current_quantity=stock.available,
                threshold=stock.low_stock_threshold,
            )
