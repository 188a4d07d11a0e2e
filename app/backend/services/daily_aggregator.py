import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from ..models.db_models import AttendanceLog, Team, User
from ..models.stats_models import DayRecord, GradeBreakdown, MemberPresence, TeamBreakdown, TodayStats
from ..modules.timekeys import date_key, ensure_aware, local_today, parse_date_key
from .log_store import LogStore
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

UNASSIGNED_TEAM_ID = "unassigned"

# Bounds the per-user history read for day records.
_MAX_LOGS_PER_DAY = 20


def present_user_ids(logs: Iterable[AttendanceLog]) -> set:
    """Users with at least one entry log. A later exit on the same day does not remove them."""
    return {log.uid for log in logs if log.type == "entry"}


def total_present(team_stats: List[TeamBreakdown]) -> int:
    return sum(grade.count for team in team_stats for grade in team.grade_stats)


def grade_breakdowns(cohorts: Dict[int, List[User]], present: set) -> List[GradeBreakdown]:
    """One bucket per cohort, newest (highest number) first."""
    grade_stats = []
    for grade in sorted(cohorts, reverse=True):
        members = [MemberPresence(**user.model_dump(), is_present=user.uid in present) for user in cohorts[grade]]
        grade_stats.append(GradeBreakdown(
            grade=grade,
            count=sum(1 for member in members if member.is_present),
            total=len(members),
            users=members
        ))
    return grade_stats


def aggregate_logs(logs: List[AttendanceLog], users: List[User], teams: List[Team]) -> List[TeamBreakdown]:
    """
    Groups every user by team and cohort and marks who was present.

    Users without a team, or pointing at a team that no longer exists, land in
    the 'unassigned' bucket. Teams appear in order of their first member by
    uid; cohorts within a team are listed newest (highest number) first.
    """
    present = present_user_ids(logs)
    team_names = {team.id: team.name for team in teams}

    groups: Dict[str, Dict[int, List[User]]] = {}
    for user in sorted(users, key=lambda u: u.uid):
        team_id = user.team_id if user.team_id in team_names else UNASSIGNED_TEAM_ID
        groups.setdefault(team_id, {}).setdefault(user.grade, []).append(user)

    return [
        TeamBreakdown(team_id=team_id, team_name=team_names.get(team_id), grade_stats=grade_breakdowns(cohorts, present))
        for team_id, cohorts in groups.items()
    ]


class DailyAggregator:
    """Breakdowns and histories read from the date partitions and the user directory."""

    def __init__(self, log_store: LogStore, user_directory: UserDirectory):
        self.log_store = log_store
        self.user_directory = user_directory

    async def aggregate(self,
                        target_date: date,
                        users: Optional[List[User]] = None,
                        teams: Optional[List[Team]] = None) -> List[TeamBreakdown]:
        """
        Breakdown for target_date; an empty partition yields an empty list.
        Callers aggregating many days may pass an already loaded directory.
        """
        key = date_key(target_date)
        logs = await self.log_store.query_date_logs(key)
        if not logs:
            return []
        if users is None:
            users = await self.user_directory.all_users()
        if teams is None:
            teams = await self.user_directory.all_teams()
        logger.debug(f"Aggregating {len(logs)} logs of {key.path} over {len(users)} users.")
        return aggregate_logs(logs, users, teams)

    async def today_stats(self, today: Optional[date] = None) -> TodayStats:
        """Present and total members of every cohort for today's partition."""
        today = today or local_today()
        users = await self.user_directory.all_users()
        present = present_user_ids(await self.log_store.query_date_logs(date_key(today)))

        cohorts: Dict[int, List[User]] = {}
        for user in sorted(users, key=lambda u: u.uid):
            cohorts.setdefault(user.grade, []).append(user)
        grade_stats = grade_breakdowns(cohorts, present)
        return TodayStats(
            day=today,
            total_users=len(users),
            present_users=sum(grade.count for grade in grade_stats),
            grade_stats=grade_stats
        )

    async def team_logs(self, team_id: str, limit: int = 50) -> List[AttendanceLog]:
        """The most recent logs of a team's members, newest first."""
        members = await self.user_directory.team_members(team_id)
        if not members:
            return []
        return await self.log_store.query_logs_for_users([member.uid for member in members], limit=limit)

    async def user_records(self, uid: str, days: int = 30, today: Optional[date] = None) -> List[DayRecord]:
        """
        One record per local date the user has logs on, over today and the
        `days` days before it, newest date first. check_in is the day's first
        entry and check_out its last exit.
        """
        today = today or local_today()
        start = today - timedelta(days=days)
        logs = await self.log_store.query_user_logs(
            uid, start=start, end=today, limit=_MAX_LOGS_PER_DAY * (days + 1)
        )

        records: Dict[date, DayRecord] = {}
        for log in sorted(logs, key=lambda log: ensure_aware(log.timestamp)):
            day = parse_date_key(date_key(log.timestamp).path)
            record = records.setdefault(day, DayRecord(day=day))
            if log.type == "entry" and record.check_in is None:
                record.check_in = log.timestamp
            elif log.type == "exit":
                record.check_out = log.timestamp
        return [records[day] for day in sorted(records, reverse=True)]
