# app/backend/models/db_models.py

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Literal, Optional

AttendanceType = Literal["entry", "exit"]
UserStatus = Literal["active", "inactive"]
LinkStatus = Literal["waiting", "opened", "done"]
NotificationLevel = Literal["important", "warning", "info"]


class User(BaseModel):
    """
    A member of the organization, stored in the 'users' collection.
    """
    uid: str = Field(..., description="Opaque unique identifier, the document key.")
    firstname: str
    lastname: str
    github: Optional[str] = None
    grade: int = Field(10, description="Joining cohort number (期生), not a school year.")
    team_id: Optional[str] = None
    card_id: Optional[str] = Field(None, description="Physical card identifier, unique when present.")
    role: Literal["user", "admin"] = "user"
    status: UserStatus = Field("inactive", description="Best-effort mirror of the latest log type.")
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.lastname} {self.firstname}".strip()


class Team(BaseModel):
    """
    A team, stored in the 'teams' collection. Users point at it through team_id.
    """
    id: str
    name: str
    leader_uid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AttendanceLog(BaseModel):
    """
    An immutable entry/exit event, stored in the partition of its calendar date.
    """
    id: Optional[str] = None
    uid: str
    type: AttendanceType
    timestamp: datetime = Field(..., description="Assigned by the store at write time.")
    card_id: Optional[str] = None
    memo: Optional[str] = None


class LinkRequest(BaseModel):
    """
    A pending card-to-user registration handshake started at the kiosk.
    """
    id: str
    token: str
    status: LinkStatus = "waiting"
    card_id: Optional[str] = None
    uid: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Notification(BaseModel):
    """An announcement shown on the kiosk."""
    id: str
    title: str
    content: str
    level: NotificationLevel = "info"
    created_at: datetime


# --- Monthly cache document ---

class CachedGradeStats(BaseModel):
    grade: int
    count: int
    user_ids: List[str] = Field(default_factory=list)
    present_user_ids: List[str] = Field(default_factory=list)


class CachedTeamStats(BaseModel):
    team_id: str
    team_name: str = ""
    grade_stats: List[CachedGradeStats] = Field(default_factory=list)


class CachedDayStats(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD")
    total_count: int
    team_stats: List[CachedTeamStats] = Field(default_factory=list)


class MonthlyAttendanceCache(BaseModel):
    """
    Derived, rebuildable monthly aggregate. Only member ids are stored to keep
    the document compact.
    """
    year: int
    month: int = Field(..., ge=1, le=12)
    daily_stats: Dict[str, CachedDayStats] = Field(default_factory=dict)
    last_calculated: datetime
    last_log_count: int
    data_hash: str
