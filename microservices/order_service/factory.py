"""
Order Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_order_service
    service = await create_order_service(settings, event_bus)
"""
from typing import Optional

from core.config import CommerceConfig, get_settings
from core.outbox import OutboxDispatcher

from .order_service import OrderService


def build_order_service(
    repository,
    inventory_client=None,
    event_bus=None,
    settings: Optional[CommerceConfig] = None,
    clock=None,
) -> OrderService:
    """Wire the service around an existing repository (real or in-memory)"""
    settings = settings or get_settings()
    outbox = OutboxDispatcher(
        repository,
        event_bus,
        batch_size=settings.messaging.outbox_batch_size,
        interval_seconds=settings.messaging.outbox_interval_seconds,
    )
    kwargs = {"clock": clock} if clock else {}
    return OrderService(
        repository=repository,
        inventory_client=inventory_client,
        outbox=outbox,
        default_currency=settings.services.default_currency,
        **kwargs,
    )


async def create_order_service(settings: Optional[CommerceConfig] = None, event_bus=None) -> OrderService:
    """
    Create OrderService with the PostgreSQL repository and HTTP inventory client.

    Use this in production, NOT in tests.
    """
    # Import real repository and client here (not at module level)
    from core.postgres_client import PostgresClient
    from .clients.inventory_client import InventoryClient
    from .order_repository import OrderRepository

    settings = settings or get_settings()
    infra = settings.infra_for("order_service")
    db = PostgresClient(
        "order_service", infra.database_dsn,
        min_size=infra.postgres_pool_min, max_size=infra.postgres_pool_max,
    )
    repository = OrderRepository(db)
    await repository.initialize()
    inventory_client = InventoryClient(
        settings.services.inventory_service_url, timeout=settings.services.inventory_client_timeout
    )
    return build_order_service(repository, inventory_client, event_bus=event_bus, settings=settings)
