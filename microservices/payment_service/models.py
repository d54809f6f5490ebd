"""
Payment Service Data Models

Payment transactions, their append-only status history and refunds.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from core.messages import utcnow


# ====================
# Enums
# ====================

class TransactionStatus(str, Enum):
    """Payment transaction status"""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDING = "refunding"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Transaction states a refund may start from
REFUNDABLE_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.PARTIALLY_REFUNDED)

# Transaction states that still accept authorize / capture / fail / cancel
OPEN_STATUSES = (TransactionStatus.PENDING, TransactionStatus.AUTHORIZED)


# ====================
# Core models
# ====================

class PaymentTransaction(BaseModel):
    """Payment transaction for one order"""
    transaction_id: str
    order_id: str
    user_id: str
    amount: Decimal = Field(..., gt=0)
    currency: str = "USD"
    payment_method_id: Optional[str] = None
    provider: str = "mock"
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_reference: Optional[str] = None
    error_message: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PaymentStatusHistory(BaseModel):
    """One row per status transition, never updated"""
    history_id: str
    transaction_id: str
    previous_status: Optional[TransactionStatus] = None
    current_status: TransactionStatus
    reason: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class Refund(BaseModel):
    refund_id: str
    transaction_id: str
    amount: Decimal = Field(..., gt=0)
    reason: str = ""
    status: RefundStatus = RefundStatus.PENDING
    requested_by: Optional[str] = None
    external_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    # Status the transaction returns to if the provider rejects the refund
    previous_transaction_status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class RefundOutcome(BaseModel):
    """Transaction and refund as left by one refund step"""
    transaction: PaymentTransaction
    refund: Refund


# ====================
# Request models
# ====================

class PaymentCreateRequest(BaseModel):
    order_id: str
    amount: Decimal = Field(..., gt=0)
    currency: str = "USD"
    payment_method_id: Optional[str] = None


class PaymentFailRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    can_retry: bool = True


class PaymentCancelRequest(BaseModel):
    reason: str = ""


class RefundCreateRequest(BaseModel):
    transaction_id: str
    amount: Decimal = Field(..., gt=0)
    reason: str = ""


class RefundProcessRequest(BaseModel):
    """Provider outcome for a refund left pending"""
    success: bool
    external_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
