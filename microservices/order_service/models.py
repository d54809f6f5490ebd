"""
Order Service Data Models

Pydantic models for carts, orders, order items, status history and the
order outbox.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from core.messages import utcnow


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class CartStatus(str, Enum):
    ACTIVE = "active"
    ORDERED = "ordered"
    ABANDONED = "abandoned"


# Carts

class CartItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    product_name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    reservation_id: Optional[str] = None


class Cart(BaseModel):
    cart_id: str
    user_id: str
    status: CartStatus = CartStatus.ACTIVE
    items: List[CartItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def total_amount(self) -> Decimal:
        return sum((i.unit_price * i.quantity for i in self.items), Decimal("0"))


# Core Order Models

class ShippingAddress(BaseModel):
    recipient_name: str
    phone_number: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str


class OrderItem(BaseModel):
    """Snapshot of a cart line at order time, keyed by order_id"""
    item_id: str
    order_id: str
    product_id: str
    variant_id: Optional[str] = None
    product_name: str
    unit_price: Decimal
    quantity: int = Field(..., gt=0)
    reservation_id: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """Core order model"""
    order_id: str
    order_number: str
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    total_amount: Decimal
    currency: str = "USD"
    items: List[OrderItem] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = None
    payment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OrderStatusHistory(BaseModel):
    """Append-only record of each status change"""
    history_id: str
    order_id: str
    status: OrderStatus
    previous_status: Optional[OrderStatus] = None
    comment: str = ""
    changed_by: Optional[str] = None
    changed_at: datetime = Field(default_factory=utcnow)


class OrderEvent(BaseModel):
    """Outbox row: an order message awaiting or past publication"""
    event_id: str
    aggregate_id: str
    event_type: str
    topic: str
    payload: Dict[str, Any]
    processed: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


# Request Models

class CartCreateRequest(BaseModel):
    items: List[CartItem] = Field(default_factory=list)


class OrderCreateRequest(BaseModel):
    cart_id: str
    shipping_address: ShippingAddress


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    comment: str = ""

    @field_validator("status")
    @classmethod
    def status_is_fulfillment_step(cls, v: OrderStatus) -> OrderStatus:
        if v not in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            raise ValueError("status updates are limited to processing, shipped and delivered")
        return v


class OrderCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
