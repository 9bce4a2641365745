"""Email delivery channel."""

from email.message import EmailMessage
from typing import Sequence

import aiosmtplib

from notifyhub.core.config import Settings, get_settings
from notifyhub.core.logging import get_logger
from notifyhub.models.notification import Attachment
from notifyhub.notification.channels.base import DeliveryChannel, DeliveryError

logger = get_logger(__name__)


class EmailChannel(DeliveryChannel):
    """Email delivery over SMTP.

    Recipients receive the message as blind copies; the visible ``To``
    header is the sender address.
    """

    def __init__(self, settings: Settings | None = None):
        """Initialize with settings."""
        self._settings = settings or get_settings()

    @property
    def channel_type(self) -> str:
        return "email"

    async def send_plain(self, to: Sequence[str], subject: str, text: str) -> None:
        msg = self._new_message(subject)
        msg.set_content(text, subtype="plain", charset="utf-8")

        await self._send(msg, to)
        logger.info("Plain text email sent", recipients=len(to))

    async def send_rich(
        self,
        to: Sequence[str],
        subject: str,
        html: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        msg = self._new_message(subject)
        msg.set_content(html, subtype="html", charset="utf-8")

        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )

        await self._send(msg, to)
        logger.info("HTML email sent", recipients=len(to), attachments=len(attachments))

    def _new_message(self, subject: str) -> EmailMessage:
        sender = self._settings.mail_from or self._settings.smtp_user
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = sender
        return msg

    async def _send(self, msg: EmailMessage, to: Sequence[str]) -> None:
        if not self._settings.smtp_host:
            raise DeliveryError("SMTP not configured")

        try:
            await aiosmtplib.send(
                msg,
                recipients=list(to),
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                username=self._settings.smtp_user or None,
                password=self._settings.smtp_password or None,
                use_tls=not self._settings.smtp_use_tls,
                start_tls=self._settings.smtp_use_tls,
                timeout=self._settings.smtp_timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Email send failed", recipients=len(to), error=str(e))
            raise DeliveryError(f"Failed to send email to {len(to)} recipients: {e}") from e
