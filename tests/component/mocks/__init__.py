"""
Component Test Mocks

In-memory implementations of the repository and client protocols.
The message bus itself is core.event_bus.InMemoryEventBus.
"""

from .inventory_mocks import InMemoryInventoryRepository
from .order_mocks import InMemoryOrderRepository, InProcessInventoryClient
from .payment_mocks import (
    BrokenRefundProvider,
    GatedPaymentProvider,
    InMemoryOutbox,
    InMemoryPaymentRepository,
    UnreachablePaymentProvider,
)

__all__ = [
    'InMemoryInventoryRepository',
    'InMemoryOrderRepository',
    'InProcessInventoryClient',
    'InMemoryOutbox',
    'InMemoryPaymentRepository',
    'GatedPaymentProvider',
    'UnreachablePaymentProvider',
    'BrokenRefundProvider',
]
