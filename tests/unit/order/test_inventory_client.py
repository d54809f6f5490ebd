"""
Unit Tests for the order service's inventory client

HTTP responses map back onto the shared error taxonomy.

Usage:
    pytest tests/unit/order/test_inventory_client.py -v
"""
import json

import httpx
import pytest

from core.errors import (
    ConflictError, InsufficientStockError, NotFoundError, PermanentError, TransientInfraError, ValidationError,
)
from microservices.order_service.clients.inventory_client import InventoryClient

pytestmark = pytest.mark.asyncio


def client_for(handler, attempts=1):
    return InventoryClient("http://inventory", attempts=attempts, transport=httpx.MockTransport(handler))


def error_response(status, kind=None, message="nope", details=None):
    body = {"message": message}
    if kind:
        body["error"] = kind
    if details:
        body["details"] = details
    return lambda request: httpx.Response(status, json=body)


class TestConfirmReservation:

    async def test_posts_reference_and_returns_reservation(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"reservation_id": "res_1", "status": "used", "items": []})

        async with client_for(handler) as client:
            reservation = await client.confirm_reservation("res_1", "order_1")

        assert seen["path"] == "/api/v1/inventory/reservations/res_1/confirm"
        assert seen["body"] == {"reference_id": "order_1"}
        assert reservation["status"] == "used"

    async def test_rollback_body(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"reference_id": "order_1", "applied": 1})

        async with client_for(handler) as client:
            result = await client.rollback("order_1", [{"product_id": "p1", "quantity": 2}], "order not created")

        assert seen["body"]["items"] == [{"product_id": "p1", "quantity": 2}]
        assert seen["body"]["reason"] == "order not created"
        assert result["applied"] == 1


class TestErrorMapping:

    @pytest.mark.parametrize("status,kind,error_cls", [
        (409, "conflict", ConflictError),
        (409, "insufficient_stock", InsufficientStockError),
        (404, "not_found", NotFoundError),
        (400, "validation", ValidationError),
        (409, None, ConflictError),
        (422, None, PermanentError),
    ])
    async def test_caller_errors(self, status, kind, error_cls):
        async with client_for(error_response(status, kind)) as client:
            with pytest.raises(error_cls):
                await client.confirm_reservation("res_1", "order_1")

    async def test_details_are_kept(self):
        handler = error_response(409, "conflict", "Reservation res_1 is expired", {"status": "expired"})

        async with client_for(handler) as client:
            with pytest.raises(ConflictError) as exc:
                await client.confirm_reservation("res_1", "order_1")

        assert exc.value.details == {"status": "expired"}
        assert exc.value.message == "Reservation res_1 is expired"

    async def test_server_error_is_transient(self):
        async with client_for(error_response(503, "transient", "db down")) as client:
            with pytest.raises(TransientInfraError):
                await client.confirm_reservation("res_1", "order_1")

    async def test_transport_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(TransientInfraError):
                await client.confirm_reservation("res_1", "order_1")

    async def test_non_json_error_body(self):
        async with client_for(lambda request: httpx.Response(404, text="Not Found")) as client:
            with pytest.raises(NotFoundError) as exc:
                await client.confirm_reservation("res_1", "order_1")

        assert exc.value.message == "Not Found"


class TestRetries:

    async def test_transient_failure_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, json={"error": "transient", "message": "db down"})
            return httpx.Response(200, json={"reservation_id": "res_1", "status": "used", "items": []})

        async with client_for(handler, attempts=2) as client:
            reservation = await client.confirm_reservation("res_1", "order_1")

        assert len(calls) == 2
        assert reservation["status"] == "used"

    async def test_caller_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(409, json={"error": "conflict", "message": "expired"})

        async with client_for(handler, attempts=3) as client:
            with pytest.raises(ConflictError):
                await client.confirm_reservation("res_1", "order_1")

        assert len(calls) == 1
