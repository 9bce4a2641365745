"""RabbitMQ message consumer."""

from aio_pika.abc import AbstractIncomingMessage

from notifyhub.core.logging import get_logger
from notifyhub.messaging.broker import RabbitMQBroker
from notifyhub.messaging.envelope import EnvelopeDecodeError, decode
from notifyhub.notification.processor import NotificationProcessor
from notifyhub.observability.metrics import NOTIFICATIONS_DISCARDED

logger = get_logger(__name__)


class RabbitMQConsumer:
    """Feeds messages from the notification queue to the processor.

    Messages are settled manually by the processor once delivery ends, so
    the prefetch count bounds the number of in-flight notifications.
    """

    def __init__(self, broker: RabbitMQBroker, processor: NotificationProcessor):
        """Initialize consumer.

        Args:
            broker: Connected broker owning the notification queue
            processor: Processor receiving decoded envelopes
        """
        self._broker = broker
        self._processor = processor
        self._should_stop = False

    async def start_consuming(self) -> None:
        """Start consuming messages from queue."""
        queue = self._broker.queue
        logger.info("Starting message consumption", queue=queue.name)

        async with queue.iterator() as queue_iter:
            async for message in queue_iter:
                if self._should_stop:
                    # Unsettled; the broker redelivers it after disconnect
                    break
                await self.process_message(message)

    async def process_message(self, message: AbstractIncomingMessage) -> None:
        """Decode a single message and pass it on.

        Args:
            message: Incoming RabbitMQ message
        """
        try:
            envelope = decode(message.body, message.headers)
        except EnvelopeDecodeError as e:
            NOTIFICATIONS_DISCARDED.labels(reason="malformed").inc()
            logger.error("Discarding malformed message", message_id=message.message_id, error=str(e))
            await message.reject(requeue=False)
            return

        await self._processor.handle(envelope, message)

    def stop(self) -> None:
        """Signal consumer to stop."""
        self._should_stop = True
        logger.info("Consumer stop requested")
