"""
Error taxonomy shared by every service.

Caller errors (validation, not found, insufficient stock, conflict) are
surfaced to the API caller. System faults are either transient (retried by
the consumer loop, 503 over HTTP) or permanent (dead-lettered).

Expected business outcomes of atomic store operations, such as a lost
compare-and-swap, are returned as `Result` values rather than raised, so
callers decide whether the outcome is an error in their context.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def is_caller_error(self) -> bool:
        return self in _CALLER_ERRORS

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


_CALLER_ERRORS = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.NOT_FOUND,
    ErrorKind.INSUFFICIENT_STOCK,
    ErrorKind.CONFLICT,
})

HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.PERMANENT: 500,
}


class ServiceError(Exception):
    """Base class; `kind` decides HTTP mapping and retry behaviour"""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.kind.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Request violates a business rule (e.g. refund exceeds remaining balance)"""
    kind = ErrorKind.VALIDATION


class NotFoundError(ServiceError):
    """Referenced product, order, transaction or reservation does not exist"""
    kind = ErrorKind.NOT_FOUND


class InsufficientStockError(ServiceError):
    """Reserve or decrement exceeds available stock"""
    kind = ErrorKind.INSUFFICIENT_STOCK


class ConflictError(ServiceError):
    """Disallowed state transition"""
    kind = ErrorKind.CONFLICT


class DuplicateMessageError(ConflictError):
    """Message id already recorded by the handler inbox"""


class TransientInfraError(ServiceError):
    """Bus or store temporarily unavailable"""
    kind = ErrorKind.TRANSIENT


class PermanentError(ServiceError):
    """Non-retryable fault, such as a malformed message"""
    kind = ErrorKind.PERMANENT


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation whose failure is an expected business condition"""

    value: Optional[T] = None
    error: Optional[ServiceError] = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value
