"""
PostgreSQL Client Wrapper

Thin asyncpg pool wrapper shared by the service repositories.

Usage:
    db = PostgresClient("inventory_service", dsn)
    await db.connect()

    rows = await db.query("SELECT * FROM inventory.stock_levels WHERE product_id = $1", product_id)

    async with db.transaction() as conn:
        await conn.execute(...)
        await conn.execute(...)

Connection-level failures surface as TransientInfraError so the consumer
loop retries the delivery and the API answers 503.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.errors import TransientInfraError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.TooManyConnectionsError,
    ConnectionError,
    OSError,
)


class PostgresClient:
    """asyncpg pool with transaction helper and error translation"""

    def __init__(
        self,
        service_name: str,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
    ):
        self.service_name = service_name
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise TransientInfraError(f"{self.service_name}: database pool not initialized")
        return self._pool

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self.dsn, min_size=self.min_size, max_size=self.max_size
            )
        except _TRANSIENT_ERRORS as e:
            raise TransientInfraError(f"Failed to connect to PostgreSQL: {e}")
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except _TRANSIENT_ERRORS as e:
            raise TransientInfraError(f"Database unavailable: {e}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection inside a transaction; commits on clean exit"""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def query(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            rows = await conn.fetch(sql, *args)
        return [dict(r) for r in rows]

    async def query_row(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            row = await conn.fetchrow(sql, *args)
        return dict(row) if row else None

    async def execute(self, sql: str, *args: Any) -> str:
        async with self.connection() as conn:
            return await conn.execute(sql, *args)

    async def health_check(self) -> bool:
        try:
            await self.query_row("SELECT 1 AS ok")
            return True
        except TransientInfraError:
            return False

    async def apply_migrations(self, directory: Path) -> List[str]:
        """Run every *.sql file in name order; files must be idempotent"""
        applied = []
        for path in sorted(Path(directory).glob("*.sql")):
            async with self.connection() as conn:
                await conn.execute(path.read_text())
            applied.append(path.name)
            logger.info(f"Applied migration {path.name}")
        return applied
