"""
Inventory Service Client for Order Service
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import (
    ConflictError, ErrorKind, InsufficientStockError, NotFoundError, PermanentError,
    ServiceError, TransientInfraError, ValidationError,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_KIND = {
    ErrorKind.VALIDATION.value: ValidationError,
    ErrorKind.NOT_FOUND.value: NotFoundError,
    ErrorKind.INSUFFICIENT_STOCK.value: InsufficientStockError,
    ErrorKind.CONFLICT.value: ConflictError,
}

_ERRORS_BY_STATUS = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
}


def _error_from_response(response: httpx.Response) -> ServiceError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or body.get("detail") or response.text or f"HTTP {response.status_code}"
    if response.status_code >= 500:
        return TransientInfraError(f"inventory_service: {message}")
    error_cls = _ERRORS_BY_KIND.get(body.get("error")) or _ERRORS_BY_STATUS.get(response.status_code, PermanentError)
    return error_cls(str(message), details=body.get("details"))


class InventoryClient:
    """Client for inventory_service"""

    def __init__(self, base_url: str, timeout: float = 30.0, attempts: int = 3, transport=None):
        self.base_url = base_url.rstrip('/')
        self.attempts = attempts
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        logger.info(f"InventoryClient initialized with base_url: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def confirm_reservation(self, reservation_id: str, reference_id: str) -> Dict[str, Any]:
        return await self._post(
            f"/api/v1/inventory/reservations/{reservation_id}/confirm",
            {"reference_id": reference_id},
        )

    async def rollback(self, reference_id: str, items: List[Dict[str, Any]], reason: str) -> Dict[str, Any]:
        return await self._post(
            "/api/v1/inventory/rollback",
            {"reference_id": reference_id, "items": items, "reason": reason},
        )

    async def _post(self, path: str, payload: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        headers = {"X-User-Id": user_id} if user_id else None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            retry=retry_if_exception_type(TransientInfraError),
            reraise=True,
        ):
            with attempt:
                try:
                    response = await self.client.post(path, json=payload, headers=headers)
                except httpx.TransportError as e:
                    raise TransientInfraError(f"inventory_service unreachable: {e}")
                if response.is_error:
                    error = _error_from_response(response)
                    logger.warning(f"POST {path} failed: {response.status_code} {error.message}")
                    raise error
                return response.json()
