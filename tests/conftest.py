"""Pytest configuration and fixtures."""

from typing import AsyncIterator

import pytest
import pytest_asyncio
from fakes import FakeFailureSink, FakePublisher

from notifyhub.core.config import Settings
from notifyhub.core.executor import ExecutorPair
from notifyhub.models.notification import Attachment, NotificationRequest
from notifyhub.notification.channels.base import DeliveryChannel
from notifyhub.notification.processor import NotificationProcessor
from notifyhub.observability.tracing import reset_receipt_counter


@pytest.fixture(autouse=True)
def reset_receipts() -> None:
    reset_receipt_counter()


@pytest.fixture
def settings() -> Settings:
    """Small pools and fast backoff for tests."""
    return Settings(
        _env_file=None,
        max_retries=2,
        backoff_base=2,
        backoff_multiplier_ms=100,
        publish_pool_min=1,
        publish_pool_max=2,
        publish_pool_queue=10,
        delivery_pool_min=1,
        delivery_pool_max=2,
        delivery_pool_queue=10,
        mail_from="test@notifyhub.com",
    )


@pytest_asyncio.fixture
async def executors(settings: Settings) -> AsyncIterator[ExecutorPair]:
    pair = ExecutorPair.from_settings(settings)
    await pair.start()
    yield pair
    await pair.shutdown()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def failure_sink() -> FakeFailureSink:
    return FakeFailureSink()


@pytest.fixture
def make_processor(
    settings: Settings,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
):
    """Build a processor around a given channel."""

    def _make(channel: DeliveryChannel) -> NotificationProcessor:
        return NotificationProcessor(
            channel=channel,
            publisher=publisher,
            failure_sink=failure_sink,
            executors=executors,
            settings=settings,
        )

    return _make


@pytest.fixture
def plain_request() -> NotificationRequest:
    return NotificationRequest(
        to=["test@email.com", "test2@email.com"],
        subject="This is a test subject",
        body="This is a test text body",
    )


@pytest.fixture
def rich_request() -> NotificationRequest:
    return NotificationRequest(
        to=["test@email.com", "test2@email.com"],
        subject="A test subject",
        html_body="<p>This is a test text body</p>",
        attachments=[Attachment(filename="a.txt", content_type="text/plain", content=b"test")],
    )


@pytest.fixture
def sample_request_data() -> dict:
    """Intake payload as posted by clients."""
    return {
        "to": ["test@email.com"],
        "subject": "Welcome",
        "body": "Hello there",
        "attachments": [
            {
                "filename": "a.txt",
                "content_type": "text/plain",
                "content": "dGVzdA==",
            }
        ],
    }
