from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional

from .db_models import User


class MemberPresence(User):
    """A user annotated with whether they were present on the target date."""
    is_present: bool = False


class GradeBreakdown(BaseModel):
    grade: int = Field(..., description="Cohort number of the bucket.")
    count: int = Field(..., description="Members present on the date.")
    total: int = Field(..., description="All members of the bucket.")
    users: List[MemberPresence] = Field(default_factory=list)


class TeamBreakdown(BaseModel):
    team_id: str
    team_name: Optional[str] = None
    grade_stats: List[GradeBreakdown] = Field(default_factory=list)


class DailyStats(BaseModel):
    total_count: int = 0
    team_stats: List[TeamBreakdown] = Field(default_factory=list)


class DayRecord(BaseModel):
    """First entry and last exit of a user on one local date."""
    day: date
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None


class TodayStats(BaseModel):
    day: date
    total_users: int = 0
    present_users: int = 0
    grade_stats: List[GradeBreakdown] = Field(default_factory=list)
