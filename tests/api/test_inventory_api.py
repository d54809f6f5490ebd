"""
Inventory Service API Tests

Usage:
    pytest tests/api/test_inventory_api.py -v
"""
import httpx
import pytest

from microservices.inventory_service import main as inventory_main

pytestmark = [pytest.mark.api, pytest.mark.asyncio]

PRODUCTS = "/api/v1/inventory/products"
RESERVATIONS = "/api/v1/inventory/reservations"
BUYER = {"X-User-Id": "usr_test_buyer"}


async def register(api, quantity=5, threshold=2, product_id="prod_widget"):
    response = await api.post(PRODUCTS, json={
        "product_id": product_id,
        "name": "Widget",
        "attributes": {"category": "generic", "brand": "Acme"},
        "initial_quantity": quantity,
        "low_stock_threshold": threshold,
    })
    assert response.status_code == 201
    return response.json()


async def reserve(api, quantity, product_id="prod_widget"):
    return await api.post(RESERVATIONS, headers=BUYER, json={
        "items": [{"product_id": product_id, "quantity": quantity}],
        "session_id": "sess_buyer",
    })


class TestProducts:

    async def test_register_returns_product_and_stock(self, inventory_api):
        body = await register(inventory_api)

        assert body["product"]["product_id"] == "prod_widget"
        assert body["product"]["attributes"]["category"] == "generic"
        assert body["stock"][0]["quantity"] == 5
        assert body["stock"][0]["available"] == 5

    async def test_unknown_product_is_404(self, inventory_api):
        response = await inventory_api.get(f"{PRODUCTS}/prod_missing")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_bad_attribute_category_is_422(self, inventory_api):
        response = await inventory_api.post(PRODUCTS, json={"name": "Thing", "attributes": {"category": "furniture"}})

        assert response.status_code == 422

    async def test_adjust_with_wrong_sign_is_400(self, inventory_api):
        await register(inventory_api)

        response = await inventory_api.post(f"{PRODUCTS}/prod_widget/adjust", json={
            "delta": 3, "change_type": "decrement", "reason": "damaged",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    async def test_adjust_records_change(self, inventory_api):
        await register(inventory_api)

        response = await inventory_api.post(
            f"{PRODUCTS}/prod_widget/adjust", headers={"X-User-Id": "usr_ops"},
            json={"delta": 4, "change_type": "increment", "reason": "restock"},
        )
        changes = await inventory_api.get(f"{PRODUCTS}/prod_widget/changes")

        assert response.json()["quantity"] == 9
        assert changes.json()[0]["user_id"] == "usr_ops"


class TestReservations:

    async def test_reserve_and_confirm(self, inventory_api):
        await register(inventory_api)

        created = await reserve(inventory_api, 2)
        reservation_id = created.json()["reservation_id"]
        confirmed = await inventory_api.post(
            f"{RESERVATIONS}/{reservation_id}/confirm", json={"reference_id": "order_1"}
        )

        assert created.status_code == 201
        assert created.json()["owner_id"] == "usr_test_buyer"
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "used"

    async def test_confirm_for_other_reference_is_409(self, inventory_api):
        await register(inventory_api)
        reservation_id = (await reserve(inventory_api, 1)).json()["reservation_id"]
        path = f"{RESERVATIONS}/{reservation_id}/confirm"
        await inventory_api.post(path, json={"reference_id": "order_1"})

        response = await inventory_api.post(path, json={"reference_id": "order_2"})

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    async def test_repeated_confirm_for_same_reference_is_200(self, inventory_api):
        await register(inventory_api)
        reservation_id = (await reserve(inventory_api, 1)).json()["reservation_id"]
        path = f"{RESERVATIONS}/{reservation_id}/confirm"
        await inventory_api.post(path, json={"reference_id": "order_1"})

        response = await inventory_api.post(path, json={"reference_id": "order_1"})
        stock = await inventory_api.get(f"{PRODUCTS}/prod_widget")

        assert response.status_code == 200
        assert response.json()["status"] == "used"
        assert stock.json()["stock"][0]["quantity"] == 4

    async def test_insufficient_stock_is_409_with_details(self, inventory_api):
        await register(inventory_api, quantity=1)

        response = await reserve(inventory_api, 2)

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_stock"
        assert response.json()["details"]["available"] == 1

    async def test_empty_reservation_is_422(self, inventory_api):
        response = await inventory_api.post(RESERVATIONS, json={"items": [], "session_id": "sess_1"})

        assert response.status_code == 422

    async def test_rollback_twice_applies_once(self, inventory_api):
        await register(inventory_api)
        reservation_id = (await reserve(inventory_api, 2)).json()["reservation_id"]
        await inventory_api.post(f"{RESERVATIONS}/{reservation_id}/confirm", json={"reference_id": "order_1"})
        body = {"reference_id": "order_1", "items": [{"product_id": "prod_widget", "quantity": 2}]}

        first = await inventory_api.post("/api/v1/inventory/rollback", json=body)
        second = await inventory_api.post("/api/v1/inventory/rollback", json=body)

        assert first.json()["applied"] == 1
        assert second.json()["applied"] == 0
        assert second.json()["stock"][0]["quantity"] == 5


class TestAlerts:

    async def test_breach_is_listed_and_resolved(self, inventory_api):
        await register(inventory_api, quantity=5, threshold=2)
        await inventory_api.post(f"{PRODUCTS}/prod_widget/adjust", json={"delta": -4, "change_type": "decrement"})

        alerts = (await inventory_api.get("/api/v1/inventory/alerts", params={"product_id": "prod_widget"})).json()
        resolved = await inventory_api.post(
            f"/api/v1/inventory/alerts/{alerts[0]['alert_id']}/resolve",
            headers={"X-User-Id": "usr_ops"}, json={"notes": "reordered"},
        )

        assert alerts[0]["alert_type"] == "low_stock"
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolved_by"] == "usr_ops"

    async def test_alert_notified_once(self, inventory_api):
        await register(inventory_api, quantity=5, threshold=2)
        await inventory_api.post(f"{PRODUCTS}/prod_widget/adjust", json={"delta": -4, "change_type": "decrement"})
        alert_id = (await inventory_api.get("/api/v1/inventory/alerts")).json()[0]["alert_id"]

        notified = await inventory_api.post(f"/api/v1/inventory/alerts/{alert_id}/notify")
        again = await inventory_api.post(f"/api/v1/inventory/alerts/{alert_id}/notify")
        pending = await inventory_api.post("/api/v1/inventory/alerts/notify-pending")

        assert notified.json()["status"] == "notified"
        assert again.status_code == 409
        assert pending.json() == {"notified": 0}


class TestUninitialized:

    async def test_routes_return_503_before_startup(self):
        transport = httpx.ASGITransport(app=inventory_main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get(f"{PRODUCTS}/prod_widget")

        assert response.status_code == 503
