"""
API Test Layer Configuration

HTTP contract tests against each service's FastAPI app, served in-process
through httpx's ASGI transport. Service dependencies are overridden with
instances built on the in-memory repositories; the app lifespan (database
pool, NATS connection) is not run.

Usage:
    pytest tests/api -v                    # Run all API tests
    pytest tests/api -v -k "inventory"     # Run inventory API tests
"""
from contextlib import asynccontextmanager

import httpx
import pytest
import pytest_asyncio

from core.event_bus import InMemoryEventBus
from microservices.inventory_service import main as inventory_main
from microservices.inventory_service.factory import build_inventory_services
from microservices.order_service import main as order_main
from microservices.order_service.factory import build_order_service
from microservices.payment_service import main as payment_main
from microservices.payment_service.factory import build_payment_service
from microservices.payment_service.providers import MockPaymentProvider

from tests.component.mocks import (
    InMemoryInventoryRepository,
    InMemoryOrderRepository,
    InMemoryPaymentRepository,
    InProcessInventoryClient,
)


@asynccontextmanager
async def served(app, dependency, instance):
    """AsyncClient against `app` with `dependency` resolved to `instance`"""
    app.dependency_overrides[dependency] = lambda: instance
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.pop(dependency, None)


# =============================================================================
# Service instances
# =============================================================================

@pytest.fixture
def inventory(settings, clock):
    return build_inventory_services(
        InMemoryInventoryRepository(), event_bus=InMemoryEventBus("inventory_service"), settings=settings, clock=clock
    )


@pytest.fixture
def order_service(inventory, settings, clock):
    return build_order_service(
        InMemoryOrderRepository(), InProcessInventoryClient(inventory),
        event_bus=InMemoryEventBus("order_service"), settings=settings, clock=clock,
    )


@pytest.fixture
def payment_service(settings, clock):
    return build_payment_service(
        InMemoryPaymentRepository(), event_bus=InMemoryEventBus("payment_service"), settings=settings,
        provider=MockPaymentProvider(), clock=clock,
    )


# =============================================================================
# Clients
# =============================================================================

@pytest_asyncio.fixture
async def inventory_api(inventory):
    async with served(inventory_main.app, inventory_main.get_services, inventory) as client:
        yield client


@pytest_asyncio.fixture
async def order_api(order_service):
    async with served(order_main.app, order_main.get_order_service, order_service) as client:
        yield client


@pytest_asyncio.fixture
async def payment_api(payment_service):
    async with served(payment_main.app, payment_main.get_payment_service, payment_service) as client:
        yield client
