"""
Inventory Service Data Models

Stock levels per product/variant, the append-only change ledger,
time-boxed reservations and low-stock alerts.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ChangeType(str, Enum):
    """Ledger entry type"""
    INCREMENT = "increment"
    DECREMENT = "decrement"
    ADJUSTMENT = "adjustment"
    ROLLBACK = "rollback"


class ReservationStatus(str, Enum):
    """Reservation status"""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class OwnerType(str, Enum):
    SESSION = "session"
    USER = "user"


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    CREATED = "created"
    NOTIFIED = "notified"
    RESOLVED = "resolved"
    IGNORED = "ignored"


OPEN_ALERT_STATUSES = (AlertStatus.CREATED, AlertStatus.NOTIFIED)


# =============================================================================
# Product catalogue (typed attributes per category)
# =============================================================================

class _Attributes(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ApparelAttributes(_Attributes):
    category: Literal["apparel"] = "apparel"
    size: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    gender: Optional[str] = None


class ElectronicsAttributes(_Attributes):
    category: Literal["electronics"] = "electronics"
    brand: Optional[str] = None
    model_number: Optional[str] = None
    warranty_months: int = Field(default=0, ge=0)
    voltage: Optional[str] = None


class BookAttributes(_Attributes):
    category: Literal["book"] = "book"
    isbn: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    pages: Optional[int] = Field(default=None, gt=0)


class GenericAttributes(_Attributes):
    category: Literal["generic"] = "generic"
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


ProductAttributes = Annotated[
    Union[ApparelAttributes, ElectronicsAttributes, BookAttributes, GenericAttributes],
    Field(discriminator="category"),
]


class ProductVariant(BaseModel):
    variant_id: str
    name: str
    sku: Optional[str] = None
    attributes: Optional[ProductAttributes] = None
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)


class Product(BaseModel):
    product_id: str
    name: str
    attributes: ProductAttributes = Field(default_factory=GenericAttributes)
    variants: List[ProductVariant] = Field(default_factory=list)
    low_stock_threshold: int = Field(default=10, ge=0)
    created_at: Optional[datetime] = None

    @property
    def category(self) -> str:
        return self.attributes.category

    def stock_keys(self) -> List[Optional[str]]:
        """Variant ids that own a stock row; None is the base product"""
        return [v.variant_id for v in self.variants] or [None]

    def threshold_for(self, variant_id: Optional[str]) -> int:
        for v in self.variants:
            if v.variant_id == variant_id and v.low_stock_threshold is not None:
                return v.low_stock_threshold
        return self.low_stock_threshold

    def display_name(self, variant_id: Optional[str] = None) -> str:
        for v in self.variants:
            if v.variant_id == variant_id:
                return f"{self.name} ({v.name})"
        return self.name


# =============================================================================
# Stock and ledger
# =============================================================================

class StockInfo(BaseModel):
    """Stock row for a product or one of its variants"""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    @model_validator(mode="after")
    def _reserved_within_quantity(self):
        if self.reserved > self.quantity:
            raise ValueError("reserved cannot exceed quantity")
        return self


class InventoryChange(BaseModel):
    """Append-only ledger row; one per successful adjustment"""
    change_id: str
    product_id: str
    variant_id: Optional[str] = None
    change_type: ChangeType
    quantity: int
    reason: str = ""
    reference_id: Optional[str] = None
    user_id: Optional[str] = None
    previous_quantity: int
    new_quantity: int
    previous_reserved: int
    new_reserved: int
    created_at: datetime


class AdjustmentOutcome(BaseModel):
    """Stock after an adjustment; `change` is None for a deduplicated rollback"""
    stock: StockInfo
    change: Optional[InventoryChange] = None

    @property
    def applied(self) -> bool:
        return self.change is not None


# =============================================================================
# Reservations
# =============================================================================

class ReservationItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., gt=0)


class Reservation(BaseModel):
    reservation_id: str
    owner_id: str
    owner_type: OwnerType
    session_id: str
    items: List[ReservationItem]
    status: ReservationStatus = ReservationStatus.ACTIVE
    expires_at: datetime
    reference_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    def is_overdue(self, now: datetime) -> bool:
        return self.status == ReservationStatus.ACTIVE and self.expires_at <= now


# =============================================================================
# Alerts
# =============================================================================

class InventoryAlert(BaseModel):
    alert_id: str
    product_id: str
    product_name: str = ""
    variant_id: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.CREATED
    current_stock: int
    threshold: int
    message: str = ""
    suggested_action: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES


# =============================================================================
# Request models
# =============================================================================

class ProductCreateRequest(BaseModel):
    product_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    attributes: ProductAttributes = Field(default_factory=GenericAttributes)
    variants: List[ProductVariant] = Field(default_factory=list)
    low_stock_threshold: int = Field(default=10, ge=0)
    initial_quantity: int = Field(default=0, ge=0)


class StockAdjustRequest(BaseModel):
    variant_id: Optional[str] = None
    delta: int
    change_type: ChangeType = ChangeType.ADJUSTMENT
    reason: str = ""
    reference_id: Optional[str] = None


class RollbackRequest(BaseModel):
    reference_id: str
    items: List[ReservationItem] = Field(..., min_length=1)
    reason: str = "order rollback"


class ReservationCreateRequest(BaseModel):
    items: List[ReservationItem] = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    ttl_minutes: Optional[int] = Field(default=None, gt=0)


class ReservationConfirmRequest(BaseModel):
    reference_id: str = Field(..., min_length=1)


class AlertResolveRequest(BaseModel):
    notes: Optional[str] = None
