"""
Reservation Manager

Time-boxed holds against the stock ledger. A reservation leaves `active`
exactly once: confirm (-> used), cancel, or expire, each a guarded
compare-and-swap in the repository. Expiry is evaluated lazily whenever a
reservation is read or acted upon; `expire_overdue_reservations` is an
explicit sweep that callers may schedule.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from core.errors import ConflictError, NotFoundError, TransientInfraError
from core.messages import ItemQuantity, utcnow

from .events.publishers import publish_inventory_reserved, publish_inventory_updated
from .models import (
    OwnerType, Reservation, ReservationItem, ReservationStatus,
)
from .protocols import InventoryRepositoryProtocol

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 30


class ReservationService:

    def __init__(
        self,
        repository: InventoryRepositoryProtocol,
        event_bus=None,
        clock: Callable[[], datetime] = utcnow,
        default_ttl_minutes: int = DEFAULT_TTL_MINUTES,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.clock = clock
        self.default_ttl_minutes = default_ttl_minutes
        self._sweeper: Optional[asyncio.Task] = None

    async def create_reservation(
        self,
        product_id: str,
        quantity: int,
        session_id: str,
        variant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> Reservation:
        """Hold `quantity` units for one product/variant"""
        return await self.create_reservation_for_items(
            [ReservationItem(product_id=product_id, variant_id=variant_id, quantity=quantity)],
            session_id=session_id,
            user_id=user_id,
            ttl_minutes=ttl_minutes,
        )

    async def create_reservation_for_items(
        self,
        items: List[ReservationItem],
        session_id: str,
        user_id: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> Reservation:
        """
        Hold every item or none.

        Raises:
            InsufficientStockError: some item exceeds available stock
            NotFoundError: some item has no stock row
        """
        now = self.clock()
        ttl = ttl_minutes or self.default_ttl_minutes
        reservation = Reservation(
            reservation_id=f"res_{uuid.uuid4().hex[:12]}",
            owner_id=user_id or session_id,
            owner_type=OwnerType.USER if user_id else OwnerType.SESSION,
            session_id=session_id,
            items=items,
            status=ReservationStatus.ACTIVE,
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
            updated_at=now,
        )
        created = (await self.repository.create_reservation(reservation)).unwrap()
        logger.info(f"Reservation {created.reservation_id} created for {created.owner_id}, expires {created.expires_at}")

        await publish_inventory_reserved(
            self.event_bus,
            reservation_id=created.reservation_id,
            owner_id=created.owner_id,
            owner_type=created.owner_type.value,
            expires_at=created.expires_at,
            items=[ItemQuantity(**i.model_dump()) for i in created.items],
        )
        return created

    async def get_reservation(self, reservation_id: str) -> Reservation:
        """Read a reservation, expiring it first if it is past its deadline"""
        reservation = await self._load(reservation_id)
        if reservation.is_overdue(self.clock()):
            return await self._expire_lazily(reservation)
        return reservation

    async def confirm_reservation(self, reservation_id: str, reference_id: str) -> Reservation:
        """
        Turn the hold into a permanent decrement tagged with `reference_id`.
        Confirming again with the same `reference_id` returns the used
        reservation without decrementing twice.

        Raises:
            ConflictError: reservation is cancelled, expired, or used by another reference
        """
        result = await self.repository.transition_reservation(
            reservation_id, ReservationStatus.USED, self.clock(), reference_id=reference_id
        )
        if not result.ok:
            current = await self.repository.get_reservation(reservation_id)
            if (
                current is not None
                and current.status == ReservationStatus.USED
                and current.reference_id == reference_id
            ):
                logger.info(f"Reservation {reservation_id} already confirmed for {reference_id}")
                return current
            await self._expire_if_overdue(reservation_id)
            raise result.error

        reservation = result.value
        logger.info(f"Reservation {reservation_id} confirmed for {reference_id}")
        for item in reservation.items:
            stock = await self.repository.get_stock(item.product_id, item.variant_id)
            await publish_inventory_updated(
                self.event_bus,
                product_id=item.product_id,
                variant_id=item.variant_id,
                new_quantity=stock.quantity if stock else 0,
                quantity_change=-item.quantity,
                reason=f"reservation {reservation_id} confirmed",
                reference_id=reference_id,
                user_id=reservation.owner_id,
            )
        return reservation

    async def cancel_reservation(self, reservation_id: str) -> Reservation:
        """
        Release the hold.

        Raises:
            ConflictError: reservation is no longer active
        """
        reservation = await self.get_reservation(reservation_id)
        if reservation.status != ReservationStatus.ACTIVE:
            raise ConflictError(
                f"Reservation {reservation_id} is {reservation.status.value}, cannot move to cancelled",
                details={"status": reservation.status.value},
            )
        result = await self.repository.transition_reservation(
            reservation_id, ReservationStatus.CANCELLED, self.clock()
        )
        cancelled = result.unwrap()
        logger.info(f"Reservation {reservation_id} cancelled")
        return cancelled

    async def expire_reservation(self, reservation_id: str) -> Reservation:
        """
        Release the hold as expired. Rejected unless the reservation is active.

        Raises:
            ConflictError: reservation is no longer active
        """
        result = await self.repository.transition_reservation(
            reservation_id, ReservationStatus.EXPIRED, self.clock()
        )
        expired = result.unwrap()
        logger.info(f"Reservation {reservation_id} expired")
        return expired

    async def list_reservations(
        self, owner_id: str, status: Optional[ReservationStatus] = None, limit: int = 50
    ) -> List[Reservation]:
        now = self.clock()
        reservations = []
        for reservation in await self.repository.list_reservations(owner_id, status, limit):
            if reservation.is_overdue(now):
                reservation = await self._expire_lazily(reservation)
                if status is not None and reservation.status != status:
                    continue
            reservations.append(reservation)
        return reservations

    async def expire_overdue_reservations(self, limit: int = 100) -> int:
        """Expire active reservations past their deadline; returns how many this call expired"""
        expired = 0
        for reservation in await self.repository.list_overdue_reservations(self.clock(), limit):
            result = await self.repository.transition_reservation(
                reservation.reservation_id, ReservationStatus.EXPIRED, self.clock()
            )
            if result.ok:
                expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue reservations")
        return expired

    # Background sweep (disabled unless an interval is configured)

    def start_sweeper(self, interval_seconds: int) -> None:
        if interval_seconds <= 0 or (self._sweeper and not self._sweeper.done()):
            return
        self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds), name="reservation-sweeper")

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

    async def _sweep_forever(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.expire_overdue_reservations()
            except TransientInfraError as e:
                logger.warning(f"Reservation sweep skipped: {e}")

    # Helpers

    async def _load(self, reservation_id: str) -> Reservation:
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    async def _expire_lazily(self, reservation: Reservation) -> Reservation:
        result = await self.repository.transition_reservation(
            reservation.reservation_id, ReservationStatus.EXPIRED, self.clock()
        )
        if result.ok:
            logger.info(f"Reservation {reservation.reservation_id} expired on access")
            return result.value
        # Someone else moved it first; report what they left
        return await self._load(reservation.reservation_id)

    async def _expire_if_overdue(self, reservation_id: str) -> None:
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is not None and reservation.is_overdue(self.clock()):
            await self._expire_lazily(reservation)
