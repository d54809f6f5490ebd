"""
NATS JetStream transport for the message bus.

Publishing sets the `Nats-Msg-Id` header to the message id so JetStream
drops duplicate publishes inside its de-duplication window. Each subscribed
topic gets a durable pull consumer; fetched messages are pushed into the
shared ConsumerLoop, which acks, naks or terminates them.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type

import nats
from nats.errors import Error as NATSError, TimeoutError as NATSTimeoutError
from nats.js.api import AckPolicy, ConsumerConfig, StreamConfig
from nats.js.errors import BadRequestError

from core.config import MessagingConfig
from core.errors import TransientInfraError
from core.event_bus import ConsumerLoop, Delivery, HandlerRegistry, MessageHandler
from core.messages import BaseMessage, Topics, message_type_of

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


# Stream name -> subjects. Every service declares all of them on connect so
# publish and subscribe work in any start-up order.
STREAMS: Dict[str, List[str]] = {
    "INVENTORY": ["inventory.>"],
    "ORDERS": [Topics.ORDER_EVENTS],
    "PAYMENTS": [Topics.PAYMENT_EVENTS],
}


def durable_name(service_name: str, topic: str) -> str:
    """Consumer names may not contain dots"""
    return f"{service_name}-{topic}".replace(".", "-").replace("_", "-")


class NATSDelivery(Delivery):
    """Wraps a JetStream message; attempt comes from the server's delivery count"""

    def __init__(self, topic: str, msg):
        try:
            payload = json.loads(msg.data.decode())
            if not isinstance(payload, dict):
                payload = None
        except (UnicodeDecodeError, json.JSONDecodeError):
            payload = None
        try:
            attempt = msg.metadata.num_delivered
        except (AttributeError, ValueError):
            attempt = 1
        super().__init__(topic, payload, attempt=attempt, raw=msg.data)
        self._msg = msg

    async def ack(self) -> None:
        await self._msg.ack()

    async def nack(self, delay: Optional[float] = None) -> None:
        await self._msg.nak(delay=delay)

    async def term(self) -> None:
        await self._msg.term()


class NATSEventBus:
    """
    JetStream-backed event bus.

    One instance per service process, created by the service's lifespan and
    passed to whatever needs it.
    """

    def __init__(self, service_name: str, servers: str, config: Optional[MessagingConfig] = None):
        self.service_name = service_name
        self.servers = servers
        self.config = config or MessagingConfig()
        self.registry = HandlerRegistry()
        self.consumer = ConsumerLoop(
            self.registry,
            dead_letter=self._park,
            max_deliveries=self.config.max_deliveries,
            queue_size=self.config.queue_size,
            workers=self.config.workers,
        )
        self._nc = None
        self._js = None
        self._fetch_tasks: List[asyncio.Task] = []
        self._running = False

        logger.info(f"NATS EventBus initialized: {servers}")

    @property
    def is_connected(self) -> bool:
        return self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        try:
            self._nc = await nats.connect(servers=self.servers.split(","), name=self.service_name)
        except (NATSError, OSError) as e:
            raise TransientInfraError(f"Failed to connect to NATS at {self.servers}: {e}")
        self._js = self._nc.jetstream()

        streams = dict(STREAMS)
        streams["DEAD_LETTERS"] = [f"{self.config.dead_letter_prefix}.>"]
        for name, subjects in streams.items():
            await self._ensure_stream(name, subjects)
        logger.info(f"Connected to NATS as {self.service_name}")

    async def _ensure_stream(self, name: str, subjects: List[str]) -> None:
        config = StreamConfig(name=name, subjects=subjects, duplicate_window=120.0)
        try:
            await self._js.add_stream(config)
        except BadRequestError:
            # Exists with a different configuration
            await self._js.update_stream(config)

    async def publish(self, message: BaseMessage, topic: str) -> None:
        if not message.sender:
            message.sender = self.service_name
        await self._publish_bytes(
            topic,
            json.dumps(message.to_envelope(), cls=DecimalEncoder).encode(),
            {"Nats-Msg-Id": message.message_id},
        )
        logger.info(f"Published {message.message_type} [{message.message_id}] to {topic}")

    async def _publish_bytes(self, subject: str, data: bytes, headers: Dict[str, str]) -> None:
        if self._js is None:
            raise TransientInfraError("Not connected to NATS")
        try:
            await self._js.publish(subject, data, headers=headers)
        except (NATSError, asyncio.TimeoutError) as e:
            raise TransientInfraError(f"Failed to publish to {subject}: {e}")

    def subscribe(self, topic: str, model: Type[BaseMessage], handler: MessageHandler) -> None:
        self.registry.register(topic, model, handler)
        logger.info(f"Subscribed to {topic}/{message_type_of(model)}")

    async def start(self) -> None:
        """Create durable consumers for every registered topic and start fetching"""
        if self._js is None:
            await self.connect()
        self._running = True
        self.consumer.start()
        for topic in self.registry.topics():
            sub = await self._js.pull_subscribe(
                topic,
                durable=durable_name(self.service_name, topic),
                config=ConsumerConfig(
                    ack_policy=AckPolicy.EXPLICIT,
                    ack_wait=self.config.ack_wait_seconds,
                ),
            )
            self._fetch_tasks.append(asyncio.create_task(self._fetch_loop(topic, sub)))
            logger.info(f"JetStream consumer started: topic={topic}")

    async def _fetch_loop(self, topic: str, sub) -> None:
        while self._running:
            try:
                msgs = await sub.fetch(
                    batch=self.config.fetch_batch,
                    timeout=self.config.fetch_timeout_seconds,
                )
            except NATSTimeoutError:
                continue
            except NATSError as e:
                logger.warning(f"Fetch error on {topic} (will retry): {e}")
                await asyncio.sleep(5)
                continue
            for msg in msgs:
                await self.consumer.submit(NATSDelivery(topic, msg))

    async def _park(self, delivery: Delivery, reason: str) -> None:
        subject = f"{self.config.dead_letter_prefix}.{delivery.topic}"
        headers = {"X-Dead-Letter-Reason": reason[:512], "X-Delivery-Attempt": str(delivery.attempt)}
        if delivery.message_id:
            headers["Nats-Msg-Id"] = f"dl-{delivery.message_id}"
        await self._publish_bytes(subject, delivery.raw, headers)

    async def close(self) -> None:
        self._running = False
        for task in self._fetch_tasks:
            task.cancel()
        if self._fetch_tasks:
            await asyncio.gather(*self._fetch_tasks, return_exceptions=True)
        self._fetch_tasks = []
        await self.consumer.stop()
        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")


async def create_event_bus(service_name: str, settings=None):
    """
    Build the bus selected by EVENT_BUS_BACKEND.

    The NATS bus is connected before returning; the in-memory bus needs no
    connection.
    """
    from core.config import get_settings
    from core.event_bus import InMemoryEventBus

    settings = settings or get_settings()
    messaging = settings.messaging
    if messaging.backend == "memory":
        return InMemoryEventBus(
            service_name=service_name,
            max_deliveries=messaging.max_deliveries,
            queue_size=messaging.queue_size,
            workers=messaging.workers,
        )

    bus = NATSEventBus(service_name, settings.infrastructure.nats_servers, messaging)
    await bus.connect()
    return bus
