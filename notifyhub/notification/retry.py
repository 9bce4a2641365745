"""Exponential backoff policy for notification retries."""

from dataclasses import dataclass
from datetime import timedelta

from notifyhub.core.config import Settings

# Largest x-delay the delayed-message exchange accepts (32-bit milliseconds)
MAX_DELAY_MS = 2**32 - 1


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff of ``base ** attempt * multiplier`` milliseconds.

    ``max_retries`` alone bounds the retry chain. Delays past what the
    broker can schedule saturate at ``MAX_DELAY_MS`` instead of failing.
    """

    max_retries: int = 3
    base: float = 5
    multiplier_ms: float = 5000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base=settings.backoff_base,
            multiplier_ms=settings.backoff_multiplier_ms,
        )

    def delay(self, attempt: int) -> timedelta:
        """Calculate the redelivery delay for a retry count.

        Args:
            attempt: Retry count carried by the failed message

        Returns:
            Delay before the next attempt
        """
        if attempt < 0:
            raise ValueError("attempt must be non-negative")
        try:
            millis = self.base**attempt * self.multiplier_ms
        except OverflowError:
            millis = MAX_DELAY_MS
        return timedelta(milliseconds=min(millis, MAX_DELAY_MS))

    def should_retry(self, attempt: int) -> bool:
        """Check if a message with this retry count may be retried."""
        return attempt < self.max_retries
