"""
Message contracts exchanged over the bus.

Every message carries the envelope fields (message_id, created_at, sender,
version, correlation_id) plus a `message_type` discriminator. The wire format
is the JSON dump of the model; `parse_message` resolves the concrete class
from the discriminator.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from core.errors import PermanentError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Topics:
    """Topic (subject) names"""
    INVENTORY_UPDATED = "inventory.updated"
    INVENTORY_LOW = "inventory.low"
    INVENTORY_RESERVED = "inventory.reserved"
    ORDER_EVENTS = "order_events"
    PAYMENT_EVENTS = "payment_events"


class BaseMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_type: str
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=utcnow)
    sender: str = ""
    version: str = "1.0"
    correlation_id: Optional[str] = None

    def to_envelope(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# =============================================================================
# Inventory
# =============================================================================

class ItemQuantity(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., gt=0)


class InventoryUpdatedMessage(BaseMessage):
    message_type: Literal["inventory_updated"] = "inventory_updated"
    product_id: str
    variant_id: Optional[str] = None
    product_name: str = ""
    new_quantity: int
    quantity_change: int
    reason: str = ""
    reference_id: Optional[str] = None
    user_id: Optional[str] = None


class InventoryLowMessage(BaseMessage):
    message_type: Literal["inventory_low"] = "inventory_low"
    product_id: str
    variant_id: Optional[str] = None
    product_name: str = ""
    current_quantity: int
    threshold: int


class InventoryReservedMessage(BaseMessage):
    message_type: Literal["inventory_reserved"] = "inventory_reserved"
    reservation_id: str
    owner_id: str
    owner_type: str
    expires_at: datetime
    items: List[ItemQuantity]


# =============================================================================
# Orders
# =============================================================================

class OrderItemPayload(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    product_name: str = ""
    quantity: int
    unit_price: Decimal


class OrderCreatedMessage(BaseMessage):
    message_type: Literal["order_created"] = "order_created"
    order_id: str
    user_id: str
    total_amount: Decimal
    currency: str = "USD"
    items: List[OrderItemPayload]


class OrderPaidMessage(BaseMessage):
    message_type: Literal["order_paid"] = "order_paid"
    order_id: str
    user_id: str
    transaction_id: Optional[str] = None


class OrderCancelledMessage(BaseMessage):
    message_type: Literal["order_cancelled"] = "order_cancelled"
    order_id: str
    user_id: str
    reason: str = ""
    items: List[OrderItemPayload] = Field(default_factory=list)


# =============================================================================
# Payments
# =============================================================================

class PaymentCompletedMessage(BaseMessage):
    message_type: Literal["payment_completed"] = "payment_completed"
    transaction_id: str
    order_id: str
    user_id: str
    amount: Decimal
    provider: str
    transaction_reference: Optional[str] = None


class PaymentFailedMessage(BaseMessage):
    message_type: Literal["payment_failed"] = "payment_failed"
    transaction_id: str
    order_id: str
    user_id: str
    amount: Decimal
    failure_reason: str
    can_retry: bool = False


class RefundProcessedMessage(BaseMessage):
    message_type: Literal["refund_processed"] = "refund_processed"
    refund_id: str
    transaction_id: str
    order_id: str
    user_id: str
    amount: Decimal
    status: str
    fully_refunded: bool = False


MESSAGE_TYPES: Dict[str, Type[BaseMessage]] = {
    cls.model_fields["message_type"].default: cls
    for cls in (
        InventoryUpdatedMessage,
        InventoryLowMessage,
        InventoryReservedMessage,
        OrderCreatedMessage,
        OrderPaidMessage,
        OrderCancelledMessage,
        PaymentCompletedMessage,
        PaymentFailedMessage,
        RefundProcessedMessage,
    )
}


def message_type_of(model: Type[BaseMessage]) -> str:
    return model.model_fields["message_type"].default


def parse_message(envelope: Dict[str, Any]) -> BaseMessage:
    """Rebuild a typed message from its wire envelope"""
    message_type = envelope.get("message_type") if isinstance(envelope, dict) else None
    model = MESSAGE_TYPES.get(message_type)
    if model is None:
        raise PermanentError(f"Unknown message type: {message_type!r}")
    return model.model_validate(envelope)
