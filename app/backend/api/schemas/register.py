from pydantic import BaseModel, Field
from typing import Optional


class RegistrationRequest(BaseModel):
    """Submission of the registration page opened from a kiosk link."""
    card_id: str = Field(..., min_length=1)
    uid: str = Field(..., min_length=1, description="Account identifier of the new member.")
    firstname: str
    lastname: str
    grade: int = Field(..., ge=1, description="Cohort number (期生).")
    team_id: Optional[str] = None
    github: Optional[str] = None
