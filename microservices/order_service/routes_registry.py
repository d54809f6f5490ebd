"""
Order Service Routes Registry

Defines service metadata and the HTTP routes the service exposes.
"""

SERVICE_METADATA = {
    "service_name": "order_service",
    "version": "1.0.0",
    "tags": ['order', 'v1'],
    "capabilities": [
        'cart_checkout', 'order_saga', 'order_fulfilment', 'order_outbox',
    ],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/api/v1/orders/carts", "methods": ["POST"], "description": "Create cart"},
    {"path": "/api/v1/orders/carts/{cart_id}", "methods": ["GET"], "description": "Get cart"},
    {"path": "/api/v1/orders", "methods": ["POST", "GET"], "description": "Create order from cart / list user orders"},
    {"path": "/api/v1/orders/{order_id}", "methods": ["GET"], "description": "Get order"},
    {"path": "/api/v1/orders/{order_id}/history", "methods": ["GET"], "description": "Status history"},
    {"path": "/api/v1/orders/{order_id}/events", "methods": ["GET"], "description": "Outbox events"},
    {"path": "/api/v1/orders/{order_id}/status", "methods": ["PUT"], "description": "Fulfilment status update"},
    {"path": "/api/v1/orders/{order_id}/cancel", "methods": ["POST"], "description": "Cancel order"},
]


def get_route_summary():
    """Route metadata for the health endpoint"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join([r["path"] for r in ROUTES]),
        "api_version": "v1",
        "base_path": "/api/v1/orders",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_summary"]
