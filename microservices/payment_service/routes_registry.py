"""
Payment Service Routes Registry

Defines service metadata and the HTTP routes the service exposes.
"""

SERVICE_METADATA = {
    "service_name": "payment_service",
    "version": "1.0.0",
    "tags": ['payment', 'v1'],
    "capabilities": [
        'payment_transactions', 'payment_capture', 'refunds',
    ],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/api/v1/payments", "methods": ["POST", "GET"], "description": "Create payment / list user payments"},
    {"path": "/api/v1/payments/{transaction_id}", "methods": ["GET"], "description": "Get payment"},
    {"path": "/api/v1/payments/{transaction_id}/history", "methods": ["GET"], "description": "Status history"},
    {"path": "/api/v1/payments/{transaction_id}/authorize", "methods": ["POST"], "description": "Authorize payment"},
    {"path": "/api/v1/payments/{transaction_id}/capture", "methods": ["POST"], "description": "Capture payment"},
    {"path": "/api/v1/payments/{transaction_id}/fail", "methods": ["POST"], "description": "Fail payment"},
    {"path": "/api/v1/payments/{transaction_id}/cancel", "methods": ["POST"], "description": "Cancel payment"},
    {"path": "/api/v1/payments/{transaction_id}/refunds", "methods": ["GET"], "description": "List refunds"},
    {"path": "/api/v1/payments/refunds", "methods": ["POST"], "description": "Create refund"},
    {"path": "/api/v1/payments/refunds/{refund_id}", "methods": ["GET"], "description": "Get refund"},
    {"path": "/api/v1/payments/refunds/{refund_id}/process", "methods": ["POST"], "description": "Settle pending refund"},
]


def get_route_summary():
    """Route metadata for the health endpoint"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join([r["path"] for r in ROUTES]),
        "api_version": "v1",
        "base_path": "/api/v1/payments",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_summary"]
