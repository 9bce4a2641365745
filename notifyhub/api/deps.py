"""API dependency injection."""

from typing import Annotated

from fastapi import Depends

from notifyhub.core.config import get_settings
from notifyhub.core.executor import BoundedExecutor
from notifyhub.messaging.broker import RabbitMQBroker
from notifyhub.messaging.producer import NotificationProducer

_broker: RabbitMQBroker | None = None
_executor: BoundedExecutor | None = None
_producer: NotificationProducer | None = None


async def init_producer() -> None:
    """Connect to the broker and start the publish pool."""
    global _broker, _executor, _producer
    if _producer is not None:
        return

    settings = get_settings()
    _broker = RabbitMQBroker(settings)
    await _broker.connect()

    _executor = BoundedExecutor(
        "publish",
        min_workers=settings.publish_pool_min,
        max_workers=settings.publish_pool_max,
        queue_capacity=settings.publish_pool_queue,
        keep_alive=settings.pool_keep_alive_seconds,
    )
    await _executor.start()
    _producer = NotificationProducer(_broker, _executor, settings)


async def close_producer() -> None:
    """Drain pending publishes and disconnect."""
    global _broker, _executor, _producer
    if _executor is not None:
        await _executor.shutdown()
    if _broker is not None:
        await _broker.disconnect()
    _broker = _executor = _producer = None


def get_producer() -> NotificationProducer:
    """Get producer instance.

    Raises:
        RuntimeError: If producer not initialized
    """
    if _producer is None:
        raise RuntimeError("Producer not initialized. Call init_producer() first.")
    return _producer


ProducerDep = Annotated[NotificationProducer, Depends(get_producer)]
