"""Tests for notification processing, retries and failure routing."""

from datetime import timedelta

import pytest
from fakes import FakeChannel, FakeFailureSink, FakePublisher, FakeReceipt

from notifyhub.core.executor import ExecutorPair
from notifyhub.messaging.envelope import Envelope
from notifyhub.models.notification import NotificationRequest
from notifyhub.notification.processor import DeliveryState, NotificationProcessor
from notifyhub.notification.retry import MAX_DELAY_MS, RetryPolicy


async def run_retry_chain(
    processor: NotificationProcessor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    request: NotificationRequest,
) -> list[FakeReceipt]:
    """Feed every re-published envelope back in, as the broker would."""
    receipts = []
    envelope: Envelope | None = Envelope(request=request)
    consumed = 0
    while envelope is not None:
        receipt = FakeReceipt()
        receipts.append(receipt)
        await processor.handle(envelope, receipt)
        await executors.join()

        envelope = None
        if len(publisher.published) > consumed:
            envelope = publisher.published[consumed][2]
            consumed += 1
    return receipts


@pytest.mark.asyncio
async def test_plain_body_uses_plain_delivery(
    make_processor,
    executors: ExecutorPair,
    plain_request: NotificationRequest,
) -> None:
    channel = FakeChannel()
    processor = make_processor(channel)
    receipt = FakeReceipt()

    state = await processor.handle(Envelope(request=plain_request), receipt)
    await executors.join()

    assert state == DeliveryState.DELIVERING
    assert channel.plain_calls == [
        (["test@email.com", "test2@email.com"], "This is a test subject", "This is a test text body")
    ]
    assert channel.rich_calls == []
    assert receipt.acked
    assert not receipt.rejected


@pytest.mark.asyncio
async def test_html_body_uses_rich_delivery_with_attachments(
    make_processor,
    executors: ExecutorPair,
    rich_request: NotificationRequest,
) -> None:
    channel = FakeChannel()
    processor = make_processor(channel)

    await processor.handle(Envelope(request=rich_request), FakeReceipt())
    await executors.join()

    assert channel.plain_calls == []
    assert len(channel.rich_calls) == 1
    to, subject, html, attachments = channel.rich_calls[0]
    assert to == ["test@email.com", "test2@email.com"]
    assert subject == "A test subject"
    assert html == "<p>This is a test text body</p>"
    assert len(attachments) == 1
    assert attachments[0].filename == "a.txt"
    assert attachments[0].content_type == "text/plain"
    assert attachments[0].content == b"test"


@pytest.mark.asyncio
async def test_missing_body_is_discarded_without_delivery(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
) -> None:
    channel = FakeChannel()
    processor = make_processor(channel)
    receipt = FakeReceipt()
    request = NotificationRequest(to=["a@example.com"], subject="Empty", body=" ", html_body=None)

    state = await processor.handle(Envelope(request=request, retry_count=1), receipt)
    await executors.join()

    assert state == DeliveryState.TERMINALLY_FAILED
    assert channel.call_count == 0
    assert publisher.published == []
    assert failure_sink.records == []
    assert receipt.rejected
    assert receipt.requeue is False


@pytest.mark.asyncio
async def test_failure_below_max_schedules_delayed_retry(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    processor = make_processor(FakeChannel(failures=None))
    receipt = FakeReceipt(routing_key="custom.key")

    state = await processor.deliver(Envelope(request=plain_request, retry_count=1), receipt)
    await executors.join()

    assert state == DeliveryState.RETRY_SCHEDULED
    assert len(publisher.published) == 1
    exchange, routing_key, envelope, delay = publisher.published[0]
    assert exchange == "notifyhub_delayed_exchange"
    assert routing_key == "custom.key"
    assert envelope.retry_count == 2
    assert envelope.request == plain_request
    assert delay == timedelta(milliseconds=200)
    assert failure_sink.records == []
    assert receipt.rejected and receipt.requeue is False
    assert not receipt.acked


@pytest.mark.asyncio
async def test_retry_falls_back_to_configured_routing_key(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    plain_request: NotificationRequest,
) -> None:
    processor = make_processor(FakeChannel(failures=1))

    await processor.deliver(Envelope(request=plain_request), FakeReceipt(routing_key=None))
    await executors.join()

    assert publisher.published[0][1] == "notifications.routing.key"


@pytest.mark.asyncio
async def test_failure_at_max_routes_to_failure_sink(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    processor = make_processor(FakeChannel(failures=None))
    receipt = FakeReceipt()

    state = await processor.deliver(Envelope(request=plain_request, retry_count=2), receipt)
    await executors.join()

    assert state == DeliveryState.TERMINALLY_FAILED
    assert publisher.published == []
    assert len(failure_sink.records) == 1
    assert failure_sink.records[0].request == plain_request
    assert failure_sink.records[0].reason == "SMTP unavailable"
    assert receipt.rejected and receipt.requeue is False


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2])
async def test_transient_failures_then_success(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
    failures: int,
) -> None:
    channel = FakeChannel(failures=failures)
    processor = make_processor(channel)

    receipts = await run_retry_chain(processor, executors, publisher, plain_request)

    assert channel.call_count == failures + 1
    assert [p[2].retry_count for p in publisher.published] == list(range(1, failures + 1))
    assert failure_sink.records == []
    assert receipts[-1].acked
    assert all(r.rejected for r in receipts[:-1])


@pytest.mark.asyncio
async def test_persistent_failure_exhausts_retries(
    make_processor,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    channel = FakeChannel(failures=None)
    processor = make_processor(channel)

    receipts = await run_retry_chain(processor, executors, publisher, plain_request)

    # max_retries=2: three attempts, two re-publishes, one failure record
    assert channel.call_count == 3
    assert [p[2].retry_count for p in publisher.published] == [1, 2]
    assert [p[3] for p in publisher.published] == [
        timedelta(milliseconds=100),
        timedelta(milliseconds=200),
    ]
    assert len(failure_sink.records) == 1
    assert failure_sink.records[0].request == plain_request
    assert len(receipts) == 3
    assert all(r.rejected and r.requeue is False for r in receipts)
    assert not any(r.acked for r in receipts)


@pytest.mark.asyncio
async def test_republish_failure_is_only_logged(
    settings,
    executors: ExecutorPair,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    publisher = FakePublisher(error=ConnectionError("broker down"))
    processor = NotificationProcessor(
        channel=FakeChannel(failures=None),
        publisher=publisher,
        failure_sink=failure_sink,
        executors=executors,
        settings=settings,
    )
    receipt = FakeReceipt()

    state = await processor.deliver(Envelope(request=plain_request), receipt)
    await executors.join()

    assert state == DeliveryState.RETRY_SCHEDULED
    assert publisher.attempts == 1
    assert failure_sink.records == []
    assert receipt.rejected


@pytest.mark.asyncio
async def test_failure_sink_error_is_only_logged(
    settings,
    executors: ExecutorPair,
    publisher: FakePublisher,
    plain_request: NotificationRequest,
) -> None:
    processor = NotificationProcessor(
        channel=FakeChannel(failures=None),
        publisher=publisher,
        failure_sink=FakeFailureSink(error=ConnectionError("broker down")),
        executors=executors,
        settings=settings,
    )
    receipt = FakeReceipt()

    state = await processor.deliver(Envelope(request=plain_request, retry_count=2), receipt)
    await executors.join()

    assert state == DeliveryState.TERMINALLY_FAILED
    assert publisher.published == []
    assert receipt.rejected


@pytest.mark.asyncio
async def test_large_retry_count_still_republishes(
    settings,
    executors: ExecutorPair,
    publisher: FakePublisher,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    processor = NotificationProcessor(
        channel=FakeChannel(failures=None),
        publisher=publisher,
        failure_sink=failure_sink,
        executors=executors,
        policy=RetryPolicy(max_retries=30, base=5, multiplier_ms=5000),
        settings=settings,
    )
    receipt = FakeReceipt()

    state = await processor.deliver(Envelope(request=plain_request, retry_count=25), receipt)
    await executors.join()

    assert state == DeliveryState.RETRY_SCHEDULED
    assert len(publisher.published) == 1
    _, _, envelope, delay = publisher.published[0]
    assert envelope.retry_count == 26
    assert delay == timedelta(milliseconds=MAX_DELAY_MS)
    assert failure_sink.records == []
    assert receipt.rejected and receipt.requeue is False


@pytest.mark.asyncio
async def test_failure_record_carries_final_retry_count(
    make_processor,
    executors: ExecutorPair,
    failure_sink: FakeFailureSink,
    plain_request: NotificationRequest,
) -> None:
    processor = make_processor(FakeChannel(failures=None))

    await processor.deliver(Envelope(request=plain_request, retry_count=2), FakeReceipt())
    await executors.join()

    assert failure_sink.records[0].retry_count == 2
