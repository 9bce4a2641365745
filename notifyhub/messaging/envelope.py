"""Notification envelope: wire format for the broker.

The body is the JSON-encoded NotificationRequest. Retry state lives in
message headers so any consumer instance can continue a retry chain:

    x-retry-count     number of re-publishes so far (absent means 0)
    x-failure-reason  last error message, only on failure-sink messages
    x-delay           broker delay in milliseconds (delayed-message exchange)
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

import aio_pika
from pydantic import ValidationError

from notifyhub.models.notification import NotificationRequest

HEADER_RETRY_COUNT = "x-retry-count"
HEADER_FAILURE_REASON = "x-failure-reason"
HEADER_DELAY = "x-delay"

CONTENT_TYPE = "application/json"


class EnvelopeDecodeError(ValueError):
    """Raised when a message cannot be turned into an envelope."""


@dataclass(frozen=True)
class Envelope:
    """A notification request plus its transport annotations."""

    request: NotificationRequest
    retry_count: int = 0
    failure_reason: str | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be non-negative")

    def next_attempt(self) -> "Envelope":
        """Envelope for the next re-publish of the same request."""
        return Envelope(request=self.request, retry_count=self.retry_count + 1)

    def as_failure(self, reason: str) -> "Envelope":
        """Envelope routed to the failure sink."""
        return Envelope(
            request=self.request,
            retry_count=self.retry_count,
            failure_reason=reason,
        )


def encode(envelope: Envelope, delay: timedelta | None = None) -> aio_pika.Message:
    """Build a persistent broker message from an envelope.

    Args:
        envelope: Envelope to encode
        delay: Optional "deliver no earlier than now + delay" instruction

    Returns:
        Message ready to publish
    """
    headers: dict[str, Any] = {HEADER_RETRY_COUNT: envelope.retry_count}
    if envelope.failure_reason is not None:
        headers[HEADER_FAILURE_REASON] = envelope.failure_reason
    if delay is not None:
        headers[HEADER_DELAY] = delay_to_millis(delay)

    return aio_pika.Message(
        body=envelope.request.model_dump_json().encode(),
        headers=headers,
        content_type=CONTENT_TYPE,
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )


def decode(body: bytes, headers: Mapping[str, Any] | None) -> Envelope:
    """Rebuild an envelope from a message body and its headers.

    Raises:
        EnvelopeDecodeError: If the body is not a valid request or the
            retry header is malformed
    """
    try:
        request = NotificationRequest.model_validate_json(body)
    except ValidationError as e:
        raise EnvelopeDecodeError(f"Invalid notification body: {e.error_count()} error(s)") from e

    headers = headers or {}
    reason = headers.get(HEADER_FAILURE_REASON)
    if isinstance(reason, bytes):
        reason = reason.decode("utf-8", errors="replace")

    return Envelope(
        request=request,
        retry_count=parse_retry_count(headers.get(HEADER_RETRY_COUNT)),
        failure_reason=reason,
    )


def parse_retry_count(value: Any) -> int:
    """Parse the retry header value. Missing means first delivery."""
    if value is None:
        return 0
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, bool):
        raise EnvelopeDecodeError(f"Invalid {HEADER_RETRY_COUNT} header: {value!r}")
    try:
        count = int(value)
    except (TypeError, ValueError) as e:
        raise EnvelopeDecodeError(f"Invalid {HEADER_RETRY_COUNT} header: {value!r}") from e
    if count < 0:
        raise EnvelopeDecodeError(f"Negative {HEADER_RETRY_COUNT} header: {count}")
    return count


def delay_to_millis(delay: timedelta) -> int:
    """Convert a delay into the broker's millisecond header value."""
    return max(0, int(delay / timedelta(milliseconds=1)))
