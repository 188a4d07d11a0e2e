from fastapi import APIRouter, Depends

from ..models.db_models import LinkRequest
from ..services.errors import ServiceError
from ..services.link_broker import RegistrationLinkBroker
from .schemas.register import RegistrationRequest
from .schemas.user import UserResponse
from .dependencies import get_link_broker
from .utilities.errors import http_error

router = APIRouter(prefix="/register", tags=["Registration"])


@router.get("/{token}", response_model=LinkRequest, summary="Open a registration link")
async def open_link_request(
    token: str,
    broker: RegistrationLinkBroker = Depends(get_link_broker)
):
    """Marks the request as opened so the kiosk can show that the link was followed."""
    try:
        return await broker.open(token)
    except ServiceError as e:
        raise http_error(e)


@router.post("/{token}", response_model=UserResponse, summary="Complete a registration")
async def complete_registration(
    token: str,
    body: RegistrationRequest,
    broker: RegistrationLinkBroker = Depends(get_link_broker)
):
    fields = body.model_dump(exclude={"card_id"})
    try:
        user = await broker.complete(token, body.card_id, fields)
    except ServiceError as e:
        raise http_error(e)
    return UserResponse.from_user(user)
