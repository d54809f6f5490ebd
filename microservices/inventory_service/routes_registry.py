"""
Inventory Service Routes Registry

Defines service metadata and the HTTP routes the service exposes.
"""

SERVICE_METADATA = {
    "service_name": "inventory_service",
    "version": "1.0.0",
    "tags": ['inventory', 'v1'],
    "capabilities": [
        'stock_ledger', 'inventory_reservation', 'inventory_rollback', 'inventory_alerts',
    ],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/api/v1/inventory/products", "methods": ["POST"], "description": "Register product and stock rows"},
    {"path": "/api/v1/inventory/products/{product_id}", "methods": ["GET"], "description": "Product with stock"},
    {"path": "/api/v1/inventory/products/{product_id}/adjust", "methods": ["POST"], "description": "Adjust stock"},
    {"path": "/api/v1/inventory/products/{product_id}/changes", "methods": ["GET"], "description": "Change ledger"},
    {"path": "/api/v1/inventory/rollback", "methods": ["POST"], "description": "Compensating increment"},
    {"path": "/api/v1/inventory/reservations", "methods": ["POST", "GET"], "description": "Create / list reservations"},
    {"path": "/api/v1/inventory/reservations/{reservation_id}", "methods": ["GET"], "description": "Get reservation"},
    {"path": "/api/v1/inventory/reservations/{reservation_id}/confirm", "methods": ["POST"], "description": "Confirm reservation"},
    {"path": "/api/v1/inventory/reservations/{reservation_id}/cancel", "methods": ["POST"], "description": "Cancel reservation"},
    {"path": "/api/v1/inventory/reservations/expire-overdue", "methods": ["POST"], "description": "Sweep overdue reservations"},
    {"path": "/api/v1/inventory/alerts", "methods": ["GET"], "description": "Active alerts"},
    {"path": "/api/v1/inventory/alerts/{alert_id}/resolve", "methods": ["POST"], "description": "Resolve alert"},
    {"path": "/api/v1/inventory/alerts/{alert_id}/ignore", "methods": ["POST"], "description": "Ignore alert"},
    {"path": "/api/v1/inventory/alerts/{alert_id}/notify", "methods": ["POST"], "description": "Mark alert notified"},
    {"path": "/api/v1/inventory/alerts/notify-pending", "methods": ["POST"], "description": "Notify all new alerts"},
]


def get_route_summary():
    """Route metadata for the health endpoint"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join([r["path"] for r in ROUTES]),
        "api_version": "v1",
        "base_path": "/api/v1/inventory",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_summary"]
