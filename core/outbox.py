"""
Transactional outbox dispatcher.

Services insert outbox rows in the same local transaction as the state
change they describe. The dispatcher publishes pending rows in creation
order and marks each one dispatched after the bus accepted it. A row that
fails to publish with a transient error stays pending and blocks the rows
behind it until the next pass, so per-aggregate ordering is preserved. A row
that can never be published (unknown type, invalid payload) is parked with
its error and skipped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import TransientInfraError
from core.messages import BaseMessage, parse_message

logger = logging.getLogger(__name__)


@dataclass
class OutboxEntry:
    event_id: str
    topic: str
    payload: Dict[str, Any]
    attempts: int = 0
    aggregate_id: str = ""

    @classmethod
    def for_message(cls, message: BaseMessage, topic: str, aggregate_id: str = "") -> "OutboxEntry":
        return cls(
            event_id=message.message_id,
            topic=topic,
            payload=message.to_envelope(),
            aggregate_id=aggregate_id,
        )

    @property
    def event_type(self) -> str:
        return self.payload.get("message_type", "")


@runtime_checkable
class OutboxStore(Protocol):

    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        ...

    async def mark_event_dispatched(self, event_id: str) -> None:
        ...

    async def record_event_failure(self, event_id: str, error: str) -> None:
        ...

    async def park_event(self, event_id: str, error: str) -> None:
        ...


class OutboxDispatcher:

    def __init__(
        self,
        store: OutboxStore,
        event_bus,
        batch_size: int = 50,
        interval_seconds: float = 2.0,
        publish_attempts: int = 3,
    ):
        self.store = store
        self.event_bus = event_bus
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.publish_attempts = publish_attempts
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def dispatch_pending(self) -> int:
        """Publish pending rows; returns how many were dispatched"""
        if self.event_bus is None:
            return 0
        async with self._lock:
            dispatched = 0
            for entry in await self.store.fetch_pending_events(self.batch_size):
                try:
                    await self._publish(entry)
                except TransientInfraError as e:
                    logger.warning(f"Outbox event {entry.event_id} not dispatched: {e}")
                    await self.store.record_event_failure(entry.event_id, str(e))
                    break
                except Exception as e:
                    logger.error(f"Outbox event {entry.event_id} ({entry.event_type or '?'}) parked: {e!r}")
                    await self.store.park_event(entry.event_id, f"{type(e).__name__}: {e}")
                    continue
                await self.store.mark_event_dispatched(entry.event_id)
                dispatched += 1
            return dispatched

    async def _publish(self, entry: OutboxEntry) -> None:
        message = parse_message(entry.payload)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.publish_attempts),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            retry=retry_if_exception_type(TransientInfraError),
            reraise=True,
        ):
            with attempt:
                await self.event_bus.publish(message, entry.topic)

    async def run_forever(self) -> None:
        while True:
            try:
                await self.dispatch_pending()
            except TransientInfraError as e:
                logger.warning(f"Outbox pass skipped: {e}")
            except Exception:
                logger.exception("Outbox pass failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="outbox-dispatcher")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None


class PostgresOutboxStore:
    """
    Outbox table access for a service schema.

    `add` takes the caller's open transaction connection; the other methods
    run on their own connections.
    """

    def __init__(self, db, schema: str, table: str = "outbox_events"):
        self.db = db
        self.table = f"{schema}.{table}"

    async def add(self, conn, entry: OutboxEntry) -> None:
        await conn.execute(
            f'''INSERT INTO {self.table}
                (event_id, aggregate_id, event_type, topic, payload, created_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, NOW())''',
            entry.event_id,
            entry.aggregate_id,
            entry.event_type,
            entry.topic,
            json.dumps(entry.payload),
        )

    async def fetch_pending_events(self, limit: int) -> List[OutboxEntry]:
        rows = await self.db.query(
            f'''SELECT event_id, aggregate_id, topic, payload, attempts FROM {self.table}
                WHERE processed = FALSE AND parked = FALSE ORDER BY created_at, event_id LIMIT {int(limit)}'''
        )
        return [
            OutboxEntry(
                event_id=r["event_id"],
                topic=r["topic"],
                payload=json.loads(r["payload"]) if isinstance(r["payload"], str) else r["payload"],
                attempts=r["attempts"],
                aggregate_id=r["aggregate_id"],
            )
            for r in rows
        ]

    async def mark_event_dispatched(self, event_id: str) -> None:
        await self.db.execute(
            f'UPDATE {self.table} SET processed = TRUE, processed_at = NOW() WHERE event_id = $1',
            event_id,
        )

    async def record_event_failure(self, event_id: str, error: str) -> None:
        await self.db.execute(
            f'UPDATE {self.table} SET attempts = attempts + 1, last_error = $2 WHERE event_id = $1',
            event_id, error[:500],
        )

    async def park_event(self, event_id: str, error: str) -> None:
        await self.db.execute(
            f'''UPDATE {self.table} SET parked = TRUE, attempts = attempts + 1, last_error = $2
                WHERE event_id = $1''',
            event_id, error[:500],
        )
