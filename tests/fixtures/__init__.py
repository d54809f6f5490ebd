"""
Shared Test Fixtures

Centralized factories and helpers used across all test layers.

Structure:
    - common.py: Base ID generators, the controllable clock
    - commerce_fixtures.py: Request and model factories per service
"""

# Common utilities
from .common import (
    FakeClock,
    make_user_id,
    make_session_id,
    make_order_id,
    make_timestamp,
)

# Service factories
from .commerce_fixtures import (
    make_product_request,
    make_variant,
    make_cart_item,
    make_shipping_address,
    make_transaction,
    make_payment_completed,
    make_payment_failed,
    make_refund_processed,
)

__all__ = [
    "FakeClock",
    "make_user_id",
    "make_session_id",
    "make_order_id",
    "make_timestamp",
    "make_product_request",
    "make_variant",
    "make_cart_item",
    "make_shipping_address",
    "make_transaction",
    "make_payment_completed",
    "make_payment_failed",
    "make_refund_processed",
]
