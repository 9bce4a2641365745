"""Notification producer."""

import asyncio

from notifyhub.core.config import Settings, get_settings
from notifyhub.core.executor import BoundedExecutor
from notifyhub.core.logging import get_logger
from notifyhub.messaging.broker import Publisher
from notifyhub.messaging.envelope import Envelope
from notifyhub.models.notification import NotificationRequest
from notifyhub.observability.metrics import NOTIFICATIONS_PUBLISHED, PUBLISH_ERRORS

logger = get_logger(__name__)


class NotificationProducer:
    """Publishes accepted notifications for asynchronous delivery."""

    def __init__(
        self,
        publisher: Publisher,
        executor: BoundedExecutor,
        settings: Settings | None = None,
    ):
        """Initialize producer.

        Args:
            publisher: Broker publisher
            executor: Publish pool
            settings: Application settings
        """
        self._settings = settings or get_settings()
        self._publisher = publisher
        self._executor = executor

    async def send(self, request: NotificationRequest) -> None:
        """Queue a notification with a retry count of 0.

        Returns once the publish is handed to the pool. Publish failures are
        logged; they are re-attempted only when
        ``initial_publish_max_retries`` is set.
        """
        logger.info("Received notification request", recipients=len(request.to))
        envelope = Envelope(request=request)

        async def job() -> None:
            await self._publish(envelope)

        await self._executor.submit(job)

    async def _publish(self, envelope: Envelope) -> None:
        settings = self._settings
        attempts = settings.initial_publish_max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                await self._publisher.publish(
                    settings.delayed_exchange,
                    settings.routing_key,
                    envelope,
                )
            except Exception as e:
                PUBLISH_ERRORS.labels(destination="initial").inc()
                logger.error(
                    "Failed to publish notification",
                    attempt=attempt,
                    attempts=attempts,
                    subject=envelope.request.subject,
                    error=str(e),
                    exc_info=True,
                )
                if attempt < attempts:
                    await asyncio.sleep(settings.initial_publish_retry_delay_ms / 1000)
                continue

            NOTIFICATIONS_PUBLISHED.inc()
            logger.info("Published notification", recipients=len(envelope.request.to))
            return
