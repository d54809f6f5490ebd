#!/usr/bin/env python3
"""Per-service settings: ports, peer URLs, business defaults"""
import os
from dataclasses import dataclass
from typing import Optional


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Service ports and peer endpoints"""

    # ===========================================
    # Ports
    # ===========================================
    inventory_port: int = 8252
    order_port: int = 8210
    payment_port: int = 8207

    # ===========================================
    # Peer services
    # ===========================================
    inventory_service_url: str = "http://localhost:8252"
    inventory_client_timeout: float = 30.0

    # ===========================================
    # Inventory
    # ===========================================
    reservation_ttl_minutes: int = 30
    # 0 disables the background sweep; expiry is then evaluated lazily only
    reservation_sweep_interval_seconds: int = 0
    # 0 disables the periodic alert notification pass
    alert_notify_interval_seconds: int = 0
    default_low_stock_threshold: int = 10

    # ===========================================
    # Payment
    # ===========================================
    stripe_secret_key: Optional[str] = None
    default_currency: str = "USD"

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            inventory_port=_int(os.getenv("INVENTORY_SERVICE_PORT", "8252"), 8252),
            order_port=_int(os.getenv("ORDER_SERVICE_PORT", "8210"), 8210),
            payment_port=_int(os.getenv("PAYMENT_SERVICE_PORT", "8207"), 8207),
            inventory_service_url=os.getenv("INVENTORY_SERVICE_URL", "http://localhost:8252"),
            inventory_client_timeout=float(os.getenv("INVENTORY_CLIENT_TIMEOUT", "30") or 30),
            reservation_ttl_minutes=_int(os.getenv("RESERVATION_TTL_MINUTES", "30"), 30),
            reservation_sweep_interval_seconds=_int(os.getenv("RESERVATION_SWEEP_INTERVAL_SECONDS", "0"), 0),
            alert_notify_interval_seconds=_int(os.getenv("ALERT_NOTIFY_INTERVAL_SECONDS", "0"), 0),
            default_low_stock_threshold=_int(os.getenv("DEFAULT_LOW_STOCK_THRESHOLD", "10"), 10),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or os.getenv("PAYMENT_SERVICE_STRIPE_SECRET_KEY") or None,
            default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
        )
