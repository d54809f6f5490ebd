#!/usr/bin/env python3
"""Message bus and background loop configuration"""
import os
from dataclasses import dataclass


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class MessagingConfig:
    """Delivery semantics shared by every consumer"""

    # "nats" for JetStream, "memory" for a single-process bus
    backend: str = "nats"

    # Bounded receive queue between the transport and handler workers
    queue_size: int = 100
    workers: int = 1

    # Deliveries beyond this count are parked on the dead-letter subject
    max_deliveries: int = 5
    ack_wait_seconds: float = 30.0
    fetch_batch: int = 10
    fetch_timeout_seconds: float = 1.0
    dead_letter_prefix: str = "dead_letter"

    # Outbox dispatcher
    outbox_interval_seconds: float = 2.0
    outbox_batch_size: int = 50

    @classmethod
    def from_env(cls) -> 'MessagingConfig':
        return cls(
            backend=os.getenv("EVENT_BUS_BACKEND", "nats").lower(),
            queue_size=_int(os.getenv("EVENT_BUS_QUEUE_SIZE", "100"), 100),
            workers=_int(os.getenv("EVENT_BUS_WORKERS", "1"), 1),
            max_deliveries=_int(os.getenv("EVENT_BUS_MAX_DELIVERIES", "5"), 5),
            ack_wait_seconds=_float(os.getenv("EVENT_BUS_ACK_WAIT_SECONDS", "30"), 30.0),
            fetch_batch=_int(os.getenv("EVENT_BUS_FETCH_BATCH", "10"), 10),
            fetch_timeout_seconds=_float(os.getenv("EVENT_BUS_FETCH_TIMEOUT_SECONDS", "1"), 1.0),
            dead_letter_prefix=os.getenv("EVENT_BUS_DEAD_LETTER_PREFIX", "dead_letter"),
            outbox_interval_seconds=_float(os.getenv("OUTBOX_INTERVAL_SECONDS", "2"), 2.0),
            outbox_batch_size=_int(os.getenv("OUTBOX_BATCH_SIZE", "50"), 50),
        )
