"""
Order component fixtures: a stocked product, a cart holding a live
reservation and an order checked out from it.
"""
import pytest_asyncio

from tests.fixtures import make_cart_item, make_product_request, make_shipping_address

BUYER = "usr_test_buyer"


@pytest_asyncio.fixture
async def stocked(inventory):
    """prod_widget with 10 units"""
    return await inventory.inventory.register_product(
        make_product_request(product_id="prod_widget", initial_quantity=10, low_stock_threshold=0)
    )


@pytest_asyncio.fixture
async def cart(inventory, order_service, stocked):
    """Active cart with 2 reserved units at 25.00"""
    reservation = await inventory.reservations.create_reservation(
        stocked.product_id, 2, session_id="sess_buyer", user_id=BUYER
    )
    return await order_service.create_cart(
        BUYER, [make_cart_item(stocked.product_id, reservation.reservation_id, quantity=2)]
    )


@pytest_asyncio.fixture
async def order(order_service, cart):
    return await order_service.create_order(cart.cart_id, BUYER, make_shipping_address())
