"""RabbitMQ topology and publishing."""

from datetime import timedelta
from typing import Protocol

import aio_pika
from aio_pika import ExchangeType
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractQueue,
    AbstractRobustConnection,
)

from notifyhub.core.config import Settings, get_settings
from notifyhub.core.logging import get_logger
from notifyhub.messaging.envelope import Envelope, encode
from notifyhub.models.notification import FailureRecord

logger = get_logger(__name__)


class Publisher(Protocol):
    """Publishes envelopes to an exchange."""

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        envelope: Envelope,
        delay: timedelta | None = None,
    ) -> None:
        ...


class FailureSink(Protocol):
    """Terminal destination for notifications that exhausted their retries."""

    async def publish_failure(self, record: FailureRecord) -> None:
        ...


class RabbitMQBroker:
    """RabbitMQ connection, topology declaration and publishing.

    Notifications go through a delayed-message exchange so a retry can be
    scheduled with the ``x-delay`` header. Failures go to a fanout exchange.
    """

    def __init__(self, settings: Settings | None = None):
        """Initialize broker."""
        self._settings = settings or get_settings()
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchanges: dict[str, AbstractExchange] = {}
        self._queue: AbstractQueue | None = None

    @property
    def queue(self) -> AbstractQueue:
        if self._queue is None:
            raise RuntimeError("Broker not connected. Call connect() first.")
        return self._queue

    async def connect(self) -> None:
        """Connect to RabbitMQ and declare the topology."""
        self._connection = await aio_pika.connect_robust(
            self._settings.rabbitmq_url,
            reconnect_interval=5,
        )
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._settings.consumer_prefetch_count)
        await self._declare_topology(self._channel)
        logger.info("Connected to RabbitMQ")

    async def disconnect(self) -> None:
        """Disconnect from RabbitMQ."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchanges.clear()
            self._queue = None
            logger.info("Disconnected from RabbitMQ")

    async def _declare_topology(self, channel: AbstractChannel) -> None:
        settings = self._settings

        delayed = await channel.declare_exchange(
            settings.delayed_exchange,
            type="x-delayed-message",
            durable=True,
            arguments={"x-delayed-type": ExchangeType.TOPIC.value},
        )
        queue = await channel.declare_queue(settings.notification_queue, durable=True)
        await queue.bind(delayed, routing_key=settings.routing_key)

        failures = await channel.declare_exchange(
            settings.failures_exchange,
            type=ExchangeType.FANOUT,
            durable=True,
        )
        failures_queue = await channel.declare_queue(settings.failures_queue, durable=True)
        await failures_queue.bind(failures)

        self._exchanges = {
            settings.delayed_exchange: delayed,
            settings.failures_exchange: failures,
        }
        self._queue = queue

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        envelope: Envelope,
        delay: timedelta | None = None,
    ) -> None:
        """Publish an envelope. Returns once the broker accepted it.

        Args:
            exchange: Exchange name
            routing_key: Routing key
            envelope: Envelope to publish
            delay: Optional broker-side delivery delay
        """
        target = self._exchanges.get(exchange)
        if target is None:
            raise RuntimeError(f"Exchange '{exchange}' is not declared")

        await target.publish(encode(envelope, delay), routing_key=routing_key)
        logger.debug(
            "Envelope published",
            exchange=exchange,
            routing_key=routing_key,
            retry_count=envelope.retry_count,
        )

    async def publish_failure(self, record: FailureRecord) -> None:
        """Publish a failure record to the failure exchange."""
        envelope = Envelope(request=record.request, retry_count=record.retry_count)
        await self.publish(self._settings.failures_exchange, "", envelope.as_failure(record.reason))
