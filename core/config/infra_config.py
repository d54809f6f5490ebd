#!/usr/bin/env python3
"""Infrastructure endpoints (PostgreSQL, NATS)

Each service owns its own database; only the message bus is shared.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class InfraConfig:
    """Infrastructure service endpoints"""

    # ===========================================
    # PostgreSQL (native asyncpg - port 5432)
    # ===========================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "postgres"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_dsn: Optional[str] = None
    postgres_pool_min: int = 1
    postgres_pool_max: int = 10

    # ===========================================
    # NATS JetStream (native - port 4222)
    # ===========================================
    nats_host: str = "localhost"
    nats_port: int = 4222
    nats_url: Optional[str] = None

    @property
    def database_dsn(self) -> str:
        if self.postgres_dsn:
            return self.postgres_dsn
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def nats_servers(self) -> str:
        return self.nats_url or f"nats://{self.nats_host}:{self.nats_port}"

    @classmethod
    def from_env(cls, prefix: str = "") -> 'InfraConfig':
        """Load infra config; `prefix` selects per-service overrides (e.g. ORDER_POSTGRES_DB)"""
        def env(key: str, default: str = "") -> str:
            if prefix:
                scoped = os.getenv(f"{prefix}_{key}")
                if scoped is not None:
                    return scoped
            return os.getenv(key, default)

        return cls(
            postgres_host=env("POSTGRES_HOST", "localhost"),
            postgres_port=_int(env("POSTGRES_PORT", "5432"), 5432),
            postgres_db=env("POSTGRES_DB", "postgres"),
            postgres_user=env("POSTGRES_USER", "postgres"),
            postgres_password=env("POSTGRES_PASSWORD", "postgres"),
            postgres_dsn=env("DATABASE_URL") or None,
            postgres_pool_min=_int(env("POSTGRES_POOL_MIN", "1"), 1),
            postgres_pool_max=_int(env("POSTGRES_POOL_MAX", "10"), 10),
            nats_host=env("NATS_HOST", "localhost"),
            nats_port=_int(env("NATS_PORT", "4222"), 4222),
            nats_url=env("NATS_URL") or None,
        )
