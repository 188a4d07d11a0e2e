# app/backend/api/schemas/user.py
from pydantic import BaseModel, Field
from typing import Literal, Optional

from ...models.db_models import User
from ...modules.grades import grade_label
from ...modules.timekeys import local_today


class UserResponse(User):
    """A user enriched with the label of their cohort for the current year."""
    grade_label: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.model_dump(), grade_label=grade_label(user.grade, local_today().year))


class UserUpdateRequest(BaseModel):
    """Partial update; only the fields sent are changed."""
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    github: Optional[str] = None
    grade: Optional[int] = Field(None, ge=1, description="Cohort number.")
    team_id: Optional[str] = None
    card_id: Optional[str] = None
    role: Optional[Literal["user", "admin"]] = None


class UserStatusResponse(BaseModel):
    uid: str
    status: Literal["active", "inactive", "unknown"]
