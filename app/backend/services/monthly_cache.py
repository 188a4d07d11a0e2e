import base64
import json
import logging
from typing import Dict, List, Optional

from ..db.redis_client import RedisClient
from ..models.db_models import (
    AttendanceLog, CachedDayStats, CachedGradeStats, CachedTeamStats, MonthlyAttendanceCache, User
)
from ..models.stats_models import DailyStats, GradeBreakdown, MemberPresence, TeamBreakdown
from ..modules.timekeys import date_key, days_in_month, ensure_aware, local_now
from .daily_aggregator import DailyAggregator, aggregate_logs, total_present
from .errors import WriteError
from .log_store import LogStore
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

MonthlyStats = Dict[str, DailyStats]


def compute_data_hash(logs: List[AttendanceLog], users: List[User]) -> str:
    """
    Change detector over (log count, user count, newest log timestamp).
    Not collision resistant: an edit that keeps all three values is not seen.
    """
    newest = max((ensure_aware(log.timestamp) for log in logs), default=None)
    data = {
        "logCount": len(logs),
        "userCount": len(users),
        "lastLogTimestamp": newest.isoformat() if newest else "",
    }
    return base64.b64encode(json.dumps(data, separators=(",", ":")).encode("utf-8")).decode("ascii")


def compact_stats(year: int, month: int, stats: MonthlyStats, log_count: int, data_hash: str) -> MonthlyAttendanceCache:
    """Cache document for a month; members are reduced to id lists."""
    daily = {}
    for day_path, day_stats in stats.items():
        daily[day_path] = CachedDayStats(
            date=day_path,
            total_count=day_stats.total_count,
            team_stats=[
                CachedTeamStats(
                    team_id=team.team_id,
                    team_name=team.team_name or "",
                    grade_stats=[
                        CachedGradeStats(
                            grade=grade.grade,
                            count=grade.count,
                            user_ids=[member.uid for member in grade.users],
                            present_user_ids=[member.uid for member in grade.users if member.is_present]
                        )
                        for grade in team.grade_stats
                    ]
                )
                for team in day_stats.team_stats
            ]
        )
    return MonthlyAttendanceCache(
        year=year,
        month=month,
        daily_stats=daily,
        last_calculated=local_now(),
        last_log_count=log_count,
        data_hash=data_hash
    )


def expand_stats(cache: MonthlyAttendanceCache, users: List[User]) -> MonthlyStats:
    """Rebuilds full breakdowns from a cache document using the current directory."""
    users_by_id = {user.uid: user for user in users}
    stats = {}
    for day_path, day in cache.daily_stats.items():
        team_stats = []
        for team in day.team_stats:
            grade_stats = []
            for grade in team.grade_stats:
                present = set(grade.present_user_ids)
                members = [
                    MemberPresence(**users_by_id[uid].model_dump(), is_present=uid in present)
                    for uid in grade.user_ids if uid in users_by_id
                ]
                grade_stats.append(GradeBreakdown(grade=grade.grade, count=grade.count, total=len(members), users=members))
            team_stats.append(TeamBreakdown(team_id=team.team_id, team_name=team.team_name or None, grade_stats=grade_stats))
        stats[day_path] = DailyStats(total_count=day.total_count, team_stats=team_stats)
    return stats


class MonthlyCacheManager:
    """
    Per-day attendance breakdowns of a month, served from a persisted cache
    record while the month's logs and the user population look unchanged.
    """
    def __init__(self,
                 redis_client: RedisClient,
                 log_store: LogStore,
                 user_directory: UserDirectory,
                 daily_aggregator: DailyAggregator):
        self.redis_client = redis_client
        self.log_store = log_store
        self.user_directory = user_directory
        self.daily_aggregator = daily_aggregator

    async def get_monthly_stats(self, year: int, month: int) -> MonthlyStats:
        """
        {YYYY-MM-DD: DailyStats} for every day of the month. A month without
        partitioned logs is computed from the legacy table instead.
        """
        logs = await self.log_store.query_month_logs(year, month)
        if not logs:
            logger.info(f"No partitioned logs for {year}-{month:02d}; using the legacy table.")
            return await self._legacy_monthly_stats(year, month)

        users = await self.user_directory.all_users()
        data_hash = compute_data_hash(logs, users)
        cached = await self._load_cache(year, month)
        if self._is_fresh(cached, data_hash, len(logs)):
            logger.info(f"Monthly cache hit for {year}-{month:02d}.")
            return expand_stats(cached, users)

        logger.info(f"Monthly cache for {year}-{month:02d} is missing or stale; recomputing.")
        teams = await self.user_directory.all_teams()
        stats: MonthlyStats = {}
        for day in days_in_month(year, month):
            team_stats = await self.daily_aggregator.aggregate(day, users=users, teams=teams)
            stats[date_key(day).path] = DailyStats(total_count=total_present(team_stats), team_stats=team_stats)

        await self._save_cache(compact_stats(year, month, stats, len(logs), data_hash))
        return stats

    async def invalidate(self, year: int, month: int):
        """Tombstones the month's cache record so the next read recomputes."""
        try:
            await self.redis_client.tombstone_monthly_cache(year, month, local_now())
        except Exception as e:
            logger.error(f"Failed to invalidate the cache of {year}-{month:02d}.", exc_info=True)
            raise WriteError("The monthly cache could not be invalidated.") from e
        logger.info(f"Monthly cache for {year}-{month:02d} invalidated.")

    async def invalidate_all(self) -> int:
        """Tombstones every monthly cache record, e.g. after a data migration."""
        try:
            count = await self.redis_client.tombstone_all_monthly_caches(local_now())
        except Exception as e:
            logger.error("Failed to invalidate the monthly caches.", exc_info=True)
            raise WriteError("The monthly caches could not be invalidated.") from e
        logger.info(f"{count} monthly cache records invalidated.")
        return count

    async def _legacy_monthly_stats(self, year: int, month: int) -> MonthlyStats:
        days = days_in_month(year, month)
        logs = await self.log_store.query_legacy_range(days[0], days[-1])
        users = await self.user_directory.all_users()
        data_hash = compute_data_hash(logs, users)
        cached = await self._load_cache(year, month)
        if self._is_fresh(cached, data_hash, len(logs)):
            logger.info(f"Monthly cache hit for {year}-{month:02d} (legacy).")
            return expand_stats(cached, users)

        teams = await self.user_directory.all_teams()
        logs_by_day: Dict[str, List[AttendanceLog]] = {}
        for log in logs:
            logs_by_day.setdefault(date_key(log.timestamp).path, []).append(log)

        stats: MonthlyStats = {}
        for day in days:
            path = date_key(day).path
            day_logs = logs_by_day.get(path, [])
            team_stats = aggregate_logs(day_logs, users, teams) if day_logs else []
            stats[path] = DailyStats(total_count=total_present(team_stats), team_stats=team_stats)

        await self._save_cache(compact_stats(year, month, stats, len(logs), data_hash))
        return stats

    @staticmethod
    def _is_fresh(cached: Optional[MonthlyAttendanceCache], data_hash: str, log_count: int) -> bool:
        return cached is not None and cached.data_hash == data_hash and cached.last_log_count == log_count

    async def _load_cache(self, year: int, month: int) -> Optional[MonthlyAttendanceCache]:
        try:
            return await self.redis_client.get_monthly_cache(year, month)
        except Exception:
            logger.error(f"Failed to read the cache of {year}-{month:02d}; treating it as missing.", exc_info=True)
            return None

    async def _save_cache(self, cache: MonthlyAttendanceCache):
        try:
            await self.redis_client.save_monthly_cache(cache)
        except Exception:
            logger.error(f"Failed to save the cache of {cache.year}-{cache.month:02d}; continuing.", exc_info=True)
