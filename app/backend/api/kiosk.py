import secrets
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from ..models.db_models import Notification
from ..services.attendance_service import AttendanceService, ToggleResult
from ..services.errors import ServiceError
from ..services.link_broker import RegistrationLinkBroker
from ..services.notification_feed import NotificationFeed
from ..services.user_directory import UserDirectory
from .schemas.kiosk import (
    LinkRequestCreatedResponse, LinkRequestCreateRequest, ManualAttendanceRequest, ScanRequest
)
from .schemas.user import UserResponse
from .dependencies import (
    get_attendance_service, get_link_broker, get_notification_feed, get_user_directory
)
from .utilities.errors import http_error
from .utilities.limiter import limiter

router = APIRouter(prefix="/kiosk", tags=["Kiosk"])


@router.post("/scan", response_model=ToggleResult, summary="Record the next entry/exit for a card")
@limiter.limit("60/minute")
async def scan_card(
    request: Request,
    body: ScanRequest,
    service: AttendanceService = Depends(get_attendance_service)
):
    """
    Called by the kiosk for every card read. Failures are reported in the
    result's status so the kiosk can always show a message.
    """
    return await service.toggle_by_card(body.card_id)


@router.post("/manual", response_model=ToggleResult, summary="Record an entry/exit chosen by the operator")
async def record_manual(
    body: ManualAttendanceRequest,
    service: AttendanceService = Depends(get_attendance_service)
):
    return await service.record_manual(body.uid, body.type)


@router.get("/users/search", response_model=List[UserResponse], summary="Find users by name or GitHub login")
async def search_users(
    q: str = Query(..., min_length=1),
    directory: UserDirectory = Depends(get_user_directory)
):
    users = await directory.search_users(q)
    return [UserResponse.from_user(user) for user in users]


@router.get("/notifications", response_model=List[Notification], summary="Recent announcements")
async def recent_notifications(
    limit: int = Query(5, ge=1, le=50),
    feed: NotificationFeed = Depends(get_notification_feed)
):
    return await feed.recent_notifications(limit)


@router.post(
    "/link-requests",
    response_model=LinkRequestCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start registering an unknown card"
)
async def create_link_request(
    body: LinkRequestCreateRequest,
    broker: RegistrationLinkBroker = Depends(get_link_broker)
):
    token = secrets.token_urlsafe(16)
    try:
        request_id = await broker.create(token, card_id=body.card_id)
    except ServiceError as e:
        raise http_error(e)
    return LinkRequestCreatedResponse(
        token=token,
        request_id=request_id,
        registration_url=broker.registration_url(token, body.card_id)
    )


@router.get("/link-requests/{token}/events", summary="Stream status changes of a link request")
async def link_request_events(
    request: Request,
    token: str,
    broker: RegistrationLinkBroker = Depends(get_link_broker)
):
    """
    Server-sent events: one 'status' event with the current record, then one
    per change. The stream ends after the request is done or the kiosk
    disconnects.
    """
    try:
        await broker.get(token)
    except ServiceError as e:
        raise http_error(e)

    async def event_stream():
        async for link_request in broker.watch(token, stop_when=request.is_disconnected):
            yield f"event: status\ndata: {link_request.model_dump_json()}\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")
