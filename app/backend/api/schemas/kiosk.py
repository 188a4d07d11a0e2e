from pydantic import BaseModel, Field

from ...models.db_models import AttendanceType


class ScanRequest(BaseModel):
    """Card id as read by the NFC reader."""
    card_id: str = Field(..., min_length=1, description="Physical card identifier.")


class ManualAttendanceRequest(BaseModel):
    """Entry or exit chosen by an operator for a user found by name."""
    uid: str
    type: AttendanceType


class LinkRequestCreateRequest(BaseModel):
    card_id: str = Field(..., min_length=1, description="The unregistered card that was scanned.")


class LinkRequestCreatedResponse(BaseModel):
    token: str
    request_id: str
    registration_url: str = Field(description="Link shown on the kiosk, e.g. as a QR code.")
