from pydantic import BaseModel, Field
from typing import Optional

from ...models.db_models import NotificationLevel


class TeamCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    leader_uid: Optional[str] = None


class TeamUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    leader_uid: Optional[str] = None


class TeamCreatedResponse(BaseModel):
    id: str


class CacheInvalidationResponse(BaseModel):
    invalidated: int = Field(description="Number of monthly cache records tombstoned.")


class NotificationCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str
    level: NotificationLevel = "info"
