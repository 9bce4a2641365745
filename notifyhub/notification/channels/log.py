"""Log-only delivery channel for load testing."""

from typing import Sequence

from notifyhub.core.logging import get_logger
from notifyhub.models.notification import Attachment
from notifyhub.notification.channels.base import DeliveryChannel

logger = get_logger(__name__)


class LogChannel(DeliveryChannel):
    """Channel that records messages in the log instead of sending them."""

    @property
    def channel_type(self) -> str:
        return "log"

    async def send_plain(self, to: Sequence[str], subject: str, text: str) -> None:
        logger.info("Plain text message", recipients=len(to), subject=subject, size=len(text))

    async def send_rich(
        self,
        to: Sequence[str],
        subject: str,
        html: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        logger.info(
            "HTML message",
            recipients=len(to),
            subject=subject,
            size=len(html),
            attachments=[a.filename for a in attachments],
        )
