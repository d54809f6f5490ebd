"""
Order Service Clients Module

HTTP clients for synchronous communication with other services
"""

from .inventory_client import InventoryClient

__all__ = [
    "InventoryClient",
]
