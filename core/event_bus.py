"""
Message bus abstraction

    EventBus           publish / subscribe / start / close, implemented by
                       InMemoryEventBus (below) and NATSEventBus (nats_client)
    HandlerRegistry    per-bus table: topic -> message_type -> (model, handler)
    ConsumerLoop       bounded receive queue plus worker tasks; turns handler
                       outcomes into ack / nack / dead-letter

Delivery contract (at-least-once):
    - ack only after the handler returned, i.e. after its local commit
    - malformed payloads and non-retryable errors are parked on the
      dead-letter path and terminated
    - anything else is nacked for redelivery until `max_deliveries`, then
      parked
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Type,
    runtime_checkable,
)

from pydantic import ValidationError as PydanticValidationError

from core.errors import ServiceError
from core.messages import BaseMessage, message_type_of, utcnow

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]


@runtime_checkable
class EventBus(Protocol):
    """Interface every bus implementation provides"""

    async def publish(self, message: BaseMessage, topic: str) -> None:
        ...

    def subscribe(self, topic: str, model: Type[BaseMessage], handler: MessageHandler) -> None:
        ...

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...


class DeliveryOutcome(str, Enum):
    ACKED = "acked"
    RETRY = "retry"
    DEAD_LETTERED = "dead_lettered"
    IGNORED = "ignored"


class Delivery(ABC):
    """
    One delivery attempt of a message.

    Transports subclass this and implement ack/nack/term. `payload` is None
    when the raw bytes could not be decoded.
    """

    def __init__(self, topic: str, payload: Optional[Dict[str, Any]], attempt: int = 1, raw: bytes = b""):
        self.topic = topic
        self.payload = payload
        self.attempt = attempt
        self.raw = raw

    @property
    def message_type(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("message_type")
        return None

    @property
    def message_id(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("message_id")
        return None

    @abstractmethod
    async def ack(self) -> None:
        ...

    @abstractmethod
    async def nack(self, delay: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def term(self) -> None:
        ...


@dataclass
class DeadLetter:
    topic: str
    payload: Optional[Dict[str, Any]]
    reason: str
    attempt: int
    raw: bytes = b""
    parked_at: datetime = field(default_factory=utcnow)


class HandlerRegistry:
    """Typed handler table owned by exactly one bus instance"""

    def __init__(self):
        self._handlers: Dict[str, Dict[str, Tuple[Type[BaseMessage], MessageHandler]]] = {}

    def register(self, topic: str, model: Type[BaseMessage], handler: MessageHandler) -> None:
        message_type = message_type_of(model)
        by_type = self._handlers.setdefault(topic, {})
        if message_type in by_type:
            raise ValueError(f"Handler already registered for {topic}/{message_type}")
        by_type[message_type] = (model, handler)

    def resolve(self, topic: str, message_type: Optional[str]) -> Optional[Tuple[Type[BaseMessage], MessageHandler]]:
        return self._handlers.get(topic, {}).get(message_type)

    def topics(self) -> List[str]:
        return list(self._handlers.keys())

    def has_topic(self, topic: str) -> bool:
        return topic in self._handlers

    def __len__(self) -> int:
        return sum(len(v) for v in self._handlers.values())


DeadLetterSink = Callable[[Delivery, str], Awaitable[None]]


class ConsumerLoop:
    """
    Explicit receive loop.

    Transports push deliveries with `submit`, which blocks while the queue is
    full. Worker tasks dispatch each delivery to the registry.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        dead_letter: DeadLetterSink,
        max_deliveries: int = 5,
        queue_size: int = 100,
        workers: int = 1,
        retry_delay: Optional[Callable[[int], float]] = None,
    ):
        self.registry = registry
        self.max_deliveries = max_deliveries
        self.queue: "asyncio.Queue[Delivery]" = asyncio.Queue(maxsize=queue_size)
        self._dead_letter = dead_letter
        self._worker_count = max(1, workers)
        self._workers: List[asyncio.Task] = []
        self._retry_delay = retry_delay or (lambda attempt: float(min(2 ** attempt, 30)))

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    async def submit(self, delivery: Delivery) -> None:
        await self.queue.put(delivery)

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"consumer-worker-{i}")
            for i in range(self._worker_count)
        ]

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def join(self) -> None:
        await self.queue.join()

    async def process_pending(self) -> int:
        """Dispatch everything currently queued on the calling task"""
        processed = 0
        while not self.queue.empty():
            delivery = self.queue.get_nowait()
            try:
                await self.dispatch(delivery)
            finally:
                self.queue.task_done()
            processed += 1
        return processed

    async def _work(self) -> None:
        while True:
            delivery = await self.queue.get()
            try:
                await self.dispatch(delivery)
            except Exception as e:
                # ack/nack itself failed; the transport redelivers after ack_wait
                logger.error(f"Failed to settle delivery on {delivery.topic}: {e}")
            finally:
                self.queue.task_done()

    async def dispatch(self, delivery: Delivery) -> DeliveryOutcome:
        if delivery.payload is None:
            return await self._park(delivery, "undecodable payload")

        entry = self.registry.resolve(delivery.topic, delivery.message_type)
        if entry is None:
            logger.debug(f"No handler for {delivery.topic}/{delivery.message_type}, acking")
            await delivery.ack()
            return DeliveryOutcome.IGNORED

        model, handler = entry
        try:
            message = model.model_validate(delivery.payload)
        except PydanticValidationError as e:
            return await self._park(delivery, f"malformed {delivery.message_type}: {e.error_count()} validation errors")

        try:
            await handler(message)
        except ServiceError as e:
            if not e.kind.retryable:
                return await self._park(delivery, f"{e.kind.value}: {e.message}")
            return await self._retry(delivery, e)
        except Exception as e:
            return await self._retry(delivery, e)

        await delivery.ack()
        return DeliveryOutcome.ACKED

    async def _retry(self, delivery: Delivery, error: Exception) -> DeliveryOutcome:
        if delivery.attempt >= self.max_deliveries:
            return await self._park(
                delivery, f"gave up after {delivery.attempt} deliveries: {error}"
            )
        logger.warning(
            f"Handler failed for {delivery.topic}/{delivery.message_type} "
            f"[{delivery.message_id}] attempt {delivery.attempt}/{self.max_deliveries}: {error}"
        )
        await delivery.nack(delay=self._retry_delay(delivery.attempt))
        return DeliveryOutcome.RETRY

    async def _park(self, delivery: Delivery, reason: str) -> DeliveryOutcome:
        logger.error(f"Dead-lettering {delivery.topic} [{delivery.message_id}]: {reason}")
        await self._dead_letter(delivery, reason)
        await delivery.term()
        return DeliveryOutcome.DEAD_LETTERED


# =============================================================================
# In-memory transport
# =============================================================================

class InMemoryDelivery(Delivery):

    def __init__(self, bus: "InMemoryEventBus", topic: str, payload: Optional[Dict[str, Any]], attempt: int = 1):
        super().__init__(topic, payload, attempt)
        self._bus = bus
        self.settled: Optional[str] = None

    async def ack(self) -> None:
        self.settled = "ack"

    async def nack(self, delay: Optional[float] = None) -> None:
        self.settled = "nack"
        self._bus._redeliver(InMemoryDelivery(self._bus, self.topic, self.payload, self.attempt + 1))

    async def term(self) -> None:
        self.settled = "term"


class InMemoryEventBus:
    """
    Single-process bus with the same delivery semantics as the NATS bus.

    Used for local runs (EVENT_BUS_BACKEND=memory) and tests. Nacked
    deliveries are redelivered immediately; `drain()` runs the queue dry.
    """

    def __init__(
        self,
        service_name: str = "local",
        max_deliveries: int = 5,
        queue_size: int = 100,
        workers: int = 1,
    ):
        self.service_name = service_name
        self.registry = HandlerRegistry()
        self.published: List[Tuple[str, Dict[str, Any]]] = []
        self.dead_letters: List[DeadLetter] = []
        self.consumer = ConsumerLoop(
            self.registry,
            dead_letter=self._park,
            max_deliveries=max_deliveries,
            queue_size=queue_size,
            workers=workers,
            retry_delay=lambda attempt: 0.0,
        )
        self._redeliveries: set = set()

    async def publish(self, message: BaseMessage, topic: str) -> None:
        if not message.sender:
            message.sender = self.service_name
        envelope = message.to_envelope()
        self.published.append((topic, envelope))
        logger.debug(f"Published {message.message_type} [{message.message_id}] to {topic}")
        if self.registry.has_topic(topic):
            await self.consumer.submit(InMemoryDelivery(self, topic, envelope))

    async def deliver_raw(self, topic: str, payload: Optional[Dict[str, Any]], attempt: int = 1) -> None:
        """Inject a delivery as a transport would, bypassing publish"""
        await self.consumer.submit(InMemoryDelivery(self, topic, payload, attempt))

    def subscribe(self, topic: str, model: Type[BaseMessage], handler: MessageHandler) -> None:
        self.registry.register(topic, model, handler)
        logger.info(f"Subscribed to {topic}/{message_type_of(model)}")

    async def start(self) -> None:
        self.consumer.start()

    async def close(self) -> None:
        await self.consumer.stop()

    async def drain(self) -> None:
        """Process until no delivery is queued or awaiting redelivery"""
        while True:
            pending = [t for t in self._redeliveries if not t.done()]
            if pending:
                await asyncio.gather(*pending)
            if self.consumer.running:
                await self.consumer.join()
            else:
                await self.consumer.process_pending()
            if self.consumer.queue.empty() and all(t.done() for t in self._redeliveries):
                return

    def _redeliver(self, delivery: InMemoryDelivery) -> None:
        task = asyncio.ensure_future(self.consumer.submit(delivery))
        self._redeliveries.add(task)
        task.add_done_callback(self._redeliveries.discard)

    async def _park(self, delivery: Delivery, reason: str) -> None:
        self.dead_letters.append(DeadLetter(
            topic=delivery.topic,
            payload=delivery.payload,
            reason=reason,
            attempt=delivery.attempt,
            raw=delivery.raw,
        ))

    # Test helpers

    def published_on(self, topic: str, message_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            envelope for t, envelope in self.published
            if t == topic and (message_type is None or envelope.get("message_type") == message_type)
        ]
