"""Notification processing: delivery, delayed retry and failure routing."""

import time
from enum import Enum
from typing import Protocol

from notifyhub.core.config import Settings, get_settings
from notifyhub.core.executor import ExecutorPair
from notifyhub.core.logging import get_logger
from notifyhub.messaging.broker import FailureSink, Publisher
from notifyhub.messaging.envelope import Envelope
from notifyhub.models.notification import FailureRecord, PlainPayload, RichPayload
from notifyhub.notification.channels.base import DeliveryChannel
from notifyhub.notification.retry import RetryPolicy
from notifyhub.observability.metrics import (
    NOTIFICATIONS_DELIVERED,
    NOTIFICATIONS_DISCARDED,
    NOTIFICATIONS_FAILED,
    NOTIFICATIONS_RECEIVED,
    NOTIFICATIONS_RETRIED,
    PUBLISH_ERRORS,
)
from notifyhub.observability.tracing import ReceiptContext, next_receipt_number

logger = get_logger(__name__)


class DeliveryState(str, Enum):
    """Processing state of a single receipt."""

    RECEIVED = "received"
    VALIDATING = "validating"
    DELIVERING = "delivering"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    TERMINALLY_FAILED = "terminally_failed"


class Receipt(Protocol):
    """Broker message handle as seen by the processor."""

    routing_key: str | None

    async def ack(self) -> None:
        ...

    async def reject(self, requeue: bool = False) -> None:
        ...


class NotificationProcessor:
    """Consumes envelopes and drives each one to a terminal state.

    Holds no retry state between receipts: the retry count travels in the
    envelope, so any instance can continue a message's retry chain.
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        publisher: Publisher,
        failure_sink: FailureSink,
        executors: ExecutorPair,
        policy: RetryPolicy | None = None,
        settings: Settings | None = None,
    ):
        """Initialize processor.

        Args:
            channel: Delivery channel
            publisher: Publisher used for delayed re-publish
            failure_sink: Destination for dead notifications
            executors: Publish and delivery pools
            policy: Retry policy (defaults to settings)
            settings: Application settings
        """
        self._settings = settings or get_settings()
        self._channel = channel
        self._publisher = publisher
        self._failure_sink = failure_sink
        self._executors = executors
        self._policy = policy or RetryPolicy.from_settings(self._settings)

    async def handle(self, envelope: Envelope, receipt: Receipt) -> DeliveryState:
        """Accept a receipt and hand delivery off to the delivery pool.

        Args:
            envelope: Decoded envelope
            receipt: Broker message to settle

        Returns:
            DELIVERING when handed off, TERMINALLY_FAILED when discarded
        """
        receipt_no = next_receipt_number()
        with ReceiptContext(receipt_no):
            NOTIFICATIONS_RECEIVED.inc()
            logger.info(
                "Received notification",
                subject=envelope.request.subject,
                retry_count=envelope.retry_count,
                state=DeliveryState.RECEIVED.value,
            )

            logger.debug("Validating notification", state=DeliveryState.VALIDATING.value)
            if not envelope.request.has_content():
                NOTIFICATIONS_DISCARDED.labels(reason="no_body").inc()
                logger.error(
                    "Discarding notification with no body (text or HTML)",
                    subject=envelope.request.subject,
                )
                await receipt.reject(requeue=False)
                return DeliveryState.TERMINALLY_FAILED

        async def job() -> None:
            await self.deliver(envelope, receipt, receipt_no)

        await self._executors.delivery.submit(job)
        return DeliveryState.DELIVERING

    async def deliver(self, envelope: Envelope, receipt: Receipt, receipt_no: int = 0) -> DeliveryState:
        """Attempt delivery and settle the receipt.

        Delivery errors never escape: they end in a scheduled retry or a
        failure record, and the receipt is rejected without requeue.

        Returns:
            Terminal state reached by this receipt
        """
        with ReceiptContext(receipt_no or None):
            request = envelope.request
            started = time.perf_counter()
            logger.debug("Starting delivery", attempt=envelope.retry_count + 1)

            try:
                channel_kind = await self._send(envelope)
            except Exception as e:
                logger.error(
                    "Delivery failed",
                    attempt=envelope.retry_count + 1,
                    error=str(e),
                    subject=request.subject,
                    exc_info=True,
                )
                try:
                    if self._policy.should_retry(envelope.retry_count):
                        await self._schedule_retry(envelope, receipt)
                        state = DeliveryState.RETRY_SCHEDULED
                    else:
                        await self._route_to_failure_sink(envelope, e)
                        state = DeliveryState.TERMINALLY_FAILED
                finally:
                    # Never left pending, never requeued by the broker
                    await receipt.reject(requeue=False)
                return state

            NOTIFICATIONS_DELIVERED.labels(channel=channel_kind).inc()
            logger.info(
                "Notification delivered",
                channel=channel_kind,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )
            await receipt.ack()
            return DeliveryState.SUCCEEDED

    async def _send(self, envelope: Envelope) -> str:
        request = envelope.request
        payload = request.payload()
        if isinstance(payload, RichPayload):
            await self._channel.send_rich(
                request.to,
                request.subject,
                payload.html,
                list(payload.attachments),
            )
            return "rich"
        if isinstance(payload, PlainPayload):
            await self._channel.send_plain(request.to, request.subject, payload.text)
            return "plain"
        raise ValueError("Notification has no body (text or HTML)")

    async def _schedule_retry(self, envelope: Envelope, receipt: Receipt) -> None:
        retry = envelope.next_attempt()
        delay = self._policy.delay(envelope.retry_count)
        exchange = self._settings.delayed_exchange
        routing_key = receipt.routing_key or self._settings.routing_key

        NOTIFICATIONS_RETRIED.inc()
        logger.info(
            "Retrying notification",
            delay_ms=int(delay.total_seconds() * 1000),
            retry_count=retry.retry_count,
        )

        async def job() -> None:
            try:
                await self._publisher.publish(exchange, routing_key, retry, delay)
            except Exception as e:
                PUBLISH_ERRORS.labels(destination="retry").inc()
                logger.error("Failed to republish notification", error=str(e), exc_info=True)

        await self._executors.publish.submit(job)

    async def _route_to_failure_sink(self, envelope: Envelope, error: Exception) -> None:
        record = FailureRecord(
            request=envelope.request,
            reason=str(error) or type(error).__name__,
            retry_count=envelope.retry_count,
        )

        NOTIFICATIONS_FAILED.inc()
        logger.error(
            "Max retries exceeded, sending to failure sink",
            max_retries=self._policy.max_retries,
            reason=record.reason,
        )

        async def job() -> None:
            try:
                await self._failure_sink.publish_failure(record)
            except Exception as e:
                PUBLISH_ERRORS.labels(destination="failure_sink").inc()
                logger.error("Failed to publish failure record", error=str(e), exc_info=True)

        await self._executors.publish.submit(job)
