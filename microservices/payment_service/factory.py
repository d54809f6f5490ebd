"""
Payment Service Factory

Factory functions for creating PaymentService with real dependencies.
This is the ONLY place that imports I/O-dependent modules.
"""

import logging
from typing import Optional

from core.config import CommerceConfig, get_settings
from core.outbox import OutboxDispatcher

from .payment_service import PaymentService
from .providers import create_provider

logger = logging.getLogger(__name__)


def build_payment_service(
    repository,
    event_bus=None,
    settings: Optional[CommerceConfig] = None,
    provider=None,
    clock=None,
) -> PaymentService:
    """Wire the service around an existing repository (real or in-memory)"""
    settings = settings or get_settings()
    outbox = OutboxDispatcher(
        repository,
        event_bus,
        batch_size=settings.messaging.outbox_batch_size,
        interval_seconds=settings.messaging.outbox_interval_seconds,
    )
    kwargs = {"clock": clock} if clock else {}
    return PaymentService(
        repository=repository,
        provider=provider or create_provider(settings.services.stripe_secret_key),
        outbox=outbox,
        default_currency=settings.services.default_currency,
        **kwargs,
    )


async def create_payment_service(settings: Optional[CommerceConfig] = None, event_bus=None) -> PaymentService:
    """
    Create PaymentService with the PostgreSQL repository.

    Use this in production, NOT in tests.
    """
    # Import real repository here (not at module level)
    from core.postgres_client import PostgresClient
    from .payment_repository import PaymentRepository

    settings = settings or get_settings()
    infra = settings.infra_for("payment_service")
    db = PostgresClient(
        "payment_service", infra.database_dsn,
        min_size=infra.postgres_pool_min, max_size=infra.postgres_pool_max,
    )
    repository = PaymentRepository(db)
    await repository.initialize()
    return build_payment_service(repository, event_bus=event_bus, settings=settings)


__all__ = ["build_payment_service", "create_payment_service"]
