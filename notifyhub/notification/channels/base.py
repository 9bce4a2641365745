"""Base class for delivery channels."""

from abc import ABC, abstractmethod
from typing import Sequence

from notifyhub.models.notification import Attachment


class DeliveryError(Exception):
    """Raised when a channel fails to deliver a message."""


class DeliveryChannel(ABC):
    """Abstract base class for delivery channels."""

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Return channel type identifier."""
        pass

    @abstractmethod
    async def send_plain(self, to: Sequence[str], subject: str, text: str) -> None:
        """Send a plain-text message.

        Args:
            to: Recipient addresses
            subject: Message subject
            text: Plain-text body

        Raises:
            DeliveryError: If the message could not be sent
        """
        pass

    @abstractmethod
    async def send_rich(
        self,
        to: Sequence[str],
        subject: str,
        html: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        """Send an HTML message with optional attachments.

        Raises:
            DeliveryError: If the message could not be sent
        """
        pass

    async def close(self) -> None:
        """Clean up resources. Override if needed."""
        pass
