#!/usr/bin/env python3
"""
Core Module for the commerce microservices

Shared infrastructure used by inventory_service, order_service and
payment_service.

COMPONENTS:
    - config/: environment-driven settings (dotenv + dataclasses)
    - logger.py: service logger setup
    - errors.py: error taxonomy and Result type
    - messages.py: message contracts and topics
    - event_bus.py: handler registry, consumer loop, in-memory bus
    - nats_client.py: NATS JetStream bus
    - postgres_client.py: asyncpg pool wrapper
    - outbox.py: transactional outbox dispatcher
"""

__version__ = "0.1.0"
