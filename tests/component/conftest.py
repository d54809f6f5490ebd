"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── inventory/   Ledger, reservations, alerts
    ├── payment/     Transaction state machine, refunds
    ├── order/       Checkout, payment handlers, cancellation
    ├── saga/        The three services wired over in-memory buses
    └── mocks/       In-memory repositories and clients

Usage:
    pytest tests/component -v
    pytest tests/component/payment -v
"""
import pytest

from core.event_bus import InMemoryEventBus
from microservices.inventory_service.factory import build_inventory_services
from microservices.order_service.factory import build_order_service
from microservices.payment_service.factory import build_payment_service
from microservices.payment_service.providers import MockPaymentProvider

from tests.component.mocks import (
    InMemoryInventoryRepository,
    InMemoryOrderRepository,
    InMemoryPaymentRepository,
    InProcessInventoryClient,
)


# =============================================================================
# Inventory
# =============================================================================

@pytest.fixture
def inventory_bus():
    return InMemoryEventBus("inventory_service")


@pytest.fixture
def inventory_repo():
    return InMemoryInventoryRepository()


@pytest.fixture
def inventory(inventory_repo, inventory_bus, settings, clock):
    """InventoryServices (ledger, reservations, alerts) on the in-memory repository"""
    return build_inventory_services(inventory_repo, event_bus=inventory_bus, settings=settings, clock=clock)


# =============================================================================
# Payment
# =============================================================================

@pytest.fixture
def payment_bus():
    return InMemoryEventBus("payment_service")


@pytest.fixture
def payment_repo():
    return InMemoryPaymentRepository()


@pytest.fixture
def payment_provider():
    return MockPaymentProvider()


@pytest.fixture
def payment_service(payment_repo, payment_bus, payment_provider, settings, clock):
    return build_payment_service(
        payment_repo, event_bus=payment_bus, settings=settings, provider=payment_provider, clock=clock
    )


# =============================================================================
# Order
# =============================================================================

@pytest.fixture
def order_bus():
    return InMemoryEventBus("order_service")


@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()


@pytest.fixture
def inventory_client(inventory):
    return InProcessInventoryClient(inventory)


@pytest.fixture
def order_service(order_repo, inventory_client, order_bus, settings, clock):
    return build_order_service(
        order_repo, inventory_client=inventory_client, event_bus=order_bus, settings=settings, clock=clock
    )
