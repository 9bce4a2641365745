"""Notification domain models."""

import base64
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator


class Attachment(BaseModel):
    """File attached to a rich notification.

    ``content`` holds raw bytes and travels as standard-alphabet base64 in JSON.
    A ``str`` value is always read as base64 text, including request bodies
    FastAPI validates in Python mode.
    """

    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., min_length=1, description="Attachment file name")
    content_type: str = Field(..., min_length=1, description="MIME type, e.g. 'text/plain'")
    content: bytes = Field(..., min_length=1, description="Attachment content (base64 in JSON)")

    @field_validator("filename", "content_type")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("content", mode="before")
    @classmethod
    def decode_base64(cls, value: Any) -> Any:
        """Accept base64 text as sent over JSON."""
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_serializer("content", when_used="json")
    def encode_base64(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


@dataclass(frozen=True)
class PlainPayload:
    """Plain-text delivery variant."""

    text: str


@dataclass(frozen=True)
class RichPayload:
    """HTML delivery variant with optional attachments."""

    html: str
    attachments: tuple[Attachment, ...] = ()


Payload = PlainPayload | RichPayload


class NotificationRequest(BaseModel):
    """Notification accepted for asynchronous delivery.

    Immutable once created; every retry carries the same request.
    """

    model_config = ConfigDict(frozen=True)

    to: list[EmailStr] = Field(..., min_length=1, description="Recipient addresses")
    subject: str = Field(..., min_length=1, description="Message subject")
    body: str | None = Field(default=None, description="Plain-text body")
    html_body: str | None = Field(default=None, description="HTML body")
    attachments: list[Attachment] = Field(
        default_factory=list,
        description="Attachments (sent with the HTML body only)",
    )

    @field_validator("subject")
    @classmethod
    def subject_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Subject cannot be blank")
        return value

    def has_content(self) -> bool:
        """Check whether either body carries text."""
        return bool((self.body and self.body.strip()) or (self.html_body and self.html_body.strip()))

    def payload(self) -> Payload | None:
        """Resolve the delivery variant.

        HTML wins when present; returns None if there is nothing to send.
        """
        if self.html_body and self.html_body.strip():
            return RichPayload(html=self.html_body, attachments=tuple(self.attachments))
        if self.body and self.body.strip():
            return PlainPayload(text=self.body)
        return None


class FailureRecord(BaseModel):
    """Terminal record for a notification that exhausted its retries."""

    model_config = ConfigDict(frozen=True)

    request: NotificationRequest
    reason: str = Field(..., description="Message of the last delivery error")
    retry_count: int = Field(default=0, ge=0, description="Re-publishes made before giving up")
