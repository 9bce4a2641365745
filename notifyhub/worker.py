"""Worker process entry point for notification consumption and delivery."""

import asyncio
import signal

from notifyhub.core.config import Settings, get_settings
from notifyhub.core.executor import ExecutorPair
from notifyhub.core.logging import get_logger, setup_logging
from notifyhub.messaging.broker import RabbitMQBroker
from notifyhub.messaging.consumer import RabbitMQConsumer
from notifyhub.notification.channels.base import DeliveryChannel
from notifyhub.notification.channels.email import EmailChannel
from notifyhub.notification.channels.log import LogChannel
from notifyhub.notification.processor import NotificationProcessor

logger = get_logger(__name__)


def create_channel(settings: Settings) -> DeliveryChannel:
    """Create the delivery channel selected by settings."""
    if settings.delivery_backend == "log":
        return LogChannel()
    return EmailChannel(settings)


class WorkerManager:
    """Manager for the consumer and its worker pools."""

    def __init__(self):
        """Initialize worker manager."""
        self._settings = get_settings()
        self._broker = RabbitMQBroker(self._settings)
        self._executors = ExecutorPair.from_settings(self._settings)
        self._channel = create_channel(self._settings)
        self._consumer: RabbitMQConsumer | None = None
        self._consume_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Connect, start the pools and consume until stopped."""
        setup_logging()
        logger.info("Starting worker manager", delivery_backend=self._settings.delivery_backend)

        await self._broker.connect()
        await self._executors.start()

        processor = NotificationProcessor(
            channel=self._channel,
            publisher=self._broker,
            failure_sink=self._broker,
            executors=self._executors,
            settings=self._settings,
        )
        self._consumer = RabbitMQConsumer(self._broker, processor)

        try:
            self._consume_task = asyncio.create_task(self._consumer.start_consuming())
            await self._consume_task
        except asyncio.CancelledError:
            logger.info("Consumer cancelled")
        except Exception as e:
            logger.error("Consumer error", error=str(e), exc_info=True)
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Signal workers to stop."""
        logger.info("Stopping workers")
        if self._consumer:
            self._consumer.stop()
        # The queue iterator blocks while idle
        if self._consume_task and not self._consume_task.done():
            self._consume_task.cancel()

    async def _cleanup(self) -> None:
        """Drain the pools, then release connections."""
        logger.info("Cleaning up resources")
        await self._executors.shutdown()
        await self._channel.close()
        await self._broker.disconnect()
        logger.info("Cleanup complete")


async def main() -> None:
    """Main entry point for worker process."""
    manager = WorkerManager()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


if __name__ == "__main__":
    asyncio.run(main())
