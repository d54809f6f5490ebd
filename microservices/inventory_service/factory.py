"""
Inventory Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_inventory_services
    services = await create_inventory_services(settings, event_bus)
"""
from dataclasses import dataclass
from typing import Optional

from core.config import CommerceConfig, get_settings

from .alert_service import AlertService
from .inventory_service import InventoryService
from .reservation_service import ReservationService


@dataclass
class InventoryServices:
    """The three inventory components sharing one repository and bus"""
    inventory: InventoryService
    reservations: ReservationService
    alerts: AlertService
    repository: object


def build_inventory_services(repository, event_bus=None, settings: Optional[CommerceConfig] = None, clock=None) -> InventoryServices:
    """Wire services around an existing repository (real or in-memory)"""
    settings = settings or get_settings()
    kwargs = {"clock": clock} if clock else {}
    alerts = AlertService(repository, **kwargs)
    return InventoryServices(
        inventory=InventoryService(repository, event_bus=event_bus, alert_service=alerts, **kwargs),
        reservations=ReservationService(
            repository,
            event_bus=event_bus,
            default_ttl_minutes=settings.services.reservation_ttl_minutes,
            **kwargs,
        ),
        alerts=alerts,
        repository=repository,
    )


async def create_inventory_services(settings: Optional[CommerceConfig] = None, event_bus=None) -> InventoryServices:
    """
    Create inventory services with the PostgreSQL repository.

    Use this in production, NOT in tests.
    """
    # Import real repository here (not at module level)
    from core.postgres_client import PostgresClient
    from .inventory_repository import InventoryRepository

    settings = settings or get_settings()
    infra = settings.infra_for("inventory_service")
    db = PostgresClient(
        "inventory_service", infra.database_dsn,
        min_size=infra.postgres_pool_min, max_size=infra.postgres_pool_max,
    )
    repository = InventoryRepository(db)
    await repository.initialize()
    return build_inventory_services(repository, event_bus=event_bus, settings=settings)
