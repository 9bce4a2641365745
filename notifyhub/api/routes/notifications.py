"""Notification intake routes."""

from fastapi import APIRouter, status

from notifyhub.api.deps import ProducerDep
from notifyhub.models.notification import NotificationRequest
from notifyhub.schemas.common import APIResponse

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=APIResponse[None],
)
async def send_notification(
    data: NotificationRequest,
    producer: ProducerDep,
) -> APIResponse[None]:
    """Accept a notification for asynchronous delivery.

    A 202 means the request was queued, not that it was delivered.
    """
    await producer.send(data)
    return APIResponse(message="Notification request accepted.")
