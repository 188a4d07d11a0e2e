import logging
from typing import Callable, List, Optional, Sequence
from datetime import date, datetime, timedelta

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AttendanceLog, AttendanceType
from ..modules.timekeys import (
    DateKey, date_key, day_bounds, days_in_month, ensure_aware, local_now, local_today, months_between
)
from ..config.config import settings
from .errors import WriteError

logger = logging.getLogger(__name__)

# Partitions fetched per round trip by the backward walk.
_WALK_CHUNK_DAYS = 31


def _newest_first(logs: List[AttendanceLog]) -> List[AttendanceLog]:
    return sorted(logs, key=lambda log: ensure_aware(log.timestamp), reverse=True)


def generate_log_id(uid: str, moment: datetime) -> str:
    """<uid>_<epochMillis>, so a user's log ids sort in write order."""
    return f"{uid}_{int(moment.timestamp() * 1000)}"


def _merge_legacy(logs: List[AttendanceLog], legacy_logs: List[AttendanceLog]) -> List[AttendanceLog]:
    """Adds legacy rows not already migrated into a partition; the partition copy wins."""
    seen = {log.id for log in logs}
    return logs + [log for log in legacy_logs if log.id not in seen]


class LogStore:
    """
    One read/write interface over the attendance logs. New logs live in
    per-date partitions; the legacy flat table is consulted only to fill gaps
    the partitions cannot answer.
    """
    def __init__(self, redis_client: RedisClient, db_client: Optional[AsyncPostgresClient] = None):
        self.redis_client = redis_client
        self.db_client = db_client

    async def append_log(self,
                         key: DateKey,
                         uid: str,
                         log_type: AttendanceType,
                         card_id: Optional[str] = None,
                         memo: Optional[str] = None,
                         log_id: Optional[str] = None) -> AttendanceLog:
        """Appends a log to the partition named by key. The timestamp is assigned here."""
        now = local_now()
        log = AttendanceLog(
            id=log_id or generate_log_id(uid, now),
            uid=uid,
            type=log_type,
            timestamp=now,
            card_id=card_id,
            memo=memo
        )
        try:
            await self.redis_client.add_log(key.path, log)
        except Exception as e:
            logger.error(f"Failed to append log {log.id} to partition {key.path}.", exc_info=True)
            raise WriteError("The attendance log could not be saved.") from e
        logger.info(f"Appended {log_type} log {log.id} to partition {key.path}.")
        return log

    async def query_date_logs(self, key: DateKey) -> List[AttendanceLog]:
        try:
            return await self.redis_client.get_date_logs(key.path)
        except Exception:
            logger.error(f"Failed to read partition {key.path}.", exc_info=True)
            return []

    async def query_month_logs(self, year: int, month: int) -> List[AttendanceLog]:
        """Every log in the month's partitions, concatenated in day order."""
        paths = [date_key(day).path for day in days_in_month(year, month)]
        try:
            partitions = await self.redis_client.get_logs_for_dates(paths)
        except Exception:
            logger.error(f"Failed to read partitions of {year}-{month:02d}.", exc_info=True)
            return []
        logs = []
        for path in paths:
            logs.extend(partitions.get(path, []))
        return logs

    async def _scan_newest(self,
                           matches: Callable[[AttendanceLog], bool],
                           start: date,
                           end: date,
                           limit: int) -> List[AttendanceLog]:
        """
        Matching partition logs, newest first. Months are scanned newest first
        and days within a month in descending order; the scan stops as soon as
        `limit` logs were collected.
        """
        logs: List[AttendanceLog] = []
        for year, month in reversed(months_between(start, end)):
            days = [day for day in days_in_month(int(year), int(month)) if start <= day <= end]
            days.reverse()
            paths = [date_key(day).path for day in days]
            partitions = await self.redis_client.get_logs_for_dates(paths)
            for path in paths:
                logs.extend(_newest_first([log for log in partitions.get(path, []) if matches(log)]))
                if len(logs) >= limit:
                    return logs
        return logs

    async def query_user_logs(self,
                              uid: str,
                              start: Optional[date] = None,
                              end: Optional[date] = None,
                              limit: Optional[int] = None) -> List[AttendanceLog]:
        """
        A user's logs in [start, end], newest first, at most `limit` of them.

        When the partitions come up short the legacy table fills the remainder.
        Legacy rows already migrated into a partition are returned once.
        """
        return await self.query_logs_for_users([uid], start=start, end=end, limit=limit)

    async def query_logs_for_users(self,
                                   uids: Sequence[str],
                                   start: Optional[date] = None,
                                   end: Optional[date] = None,
                                   limit: Optional[int] = None) -> List[AttendanceLog]:
        """Logs of any of the given users in [start, end], newest first, at most `limit`."""
        limit = settings.USER_LOG_DEFAULT_LIMIT if limit is None else limit
        start = start or date.fromisoformat(settings.HISTORY_START)
        end = end or local_today()
        wanted = set(uids)
        if limit <= 0 or start > end or not wanted:
            return []

        logs: List[AttendanceLog] = []
        try:
            logs = await self._scan_newest(lambda log: log.uid in wanted, start, end, limit)
        except Exception:
            logger.error(f"Failed to scan partitions for users {sorted(wanted)}.", exc_info=True)

        if len(logs) < limit and self.db_client is not None:
            range_start, _ = day_bounds(start)
            _, range_end = day_bounds(end)
            try:
                # Migrated rows overlap the partition logs; _merge_legacy drops them.
                legacy_logs = await self.db_client.get_logs_for_users(sorted(wanted), range_start, range_end, limit)
            except Exception:
                logger.error(f"Failed to read legacy logs for users {sorted(wanted)}.", exc_info=True)
            else:
                logs = _merge_legacy(logs, legacy_logs)

        return _newest_first(logs)[:limit]

    async def latest_log_for_user(self, uid: str, today: Optional[date] = None) -> Optional[AttendanceLog]:
        """
        The user's most recent log within the lookback window (today and the
        LATEST_LOG_LOOKBACK_DAYS - 1 days before it), else the newest legacy log.

        A log older than the window is not found even if it is the true latest.
        Store errors propagate: the toggle decision must not be made on a failed read.
        """
        today = today or local_today()
        days = [today - timedelta(days=offset) for offset in range(settings.LATEST_LOG_LOOKBACK_DAYS)]
        for chunk_start in range(0, len(days), _WALK_CHUNK_DAYS):
            paths = [date_key(day).path for day in days[chunk_start:chunk_start + _WALK_CHUNK_DAYS]]
            partitions = await self.redis_client.get_logs_for_dates(paths)
            for path in paths:
                user_logs = [log for log in partitions.get(path, []) if log.uid == uid]
                if user_logs:
                    return _newest_first(user_logs)[0]

        if self.db_client is None:
            return None
        return await self.db_client.get_latest_user_log(uid)

    async def query_legacy_range(self, start: date, end: date) -> List[AttendanceLog]:
        """Legacy logs between the start of `start` and the end of `end`."""
        if self.db_client is None:
            return []
        range_start, _ = day_bounds(start)
        _, range_end = day_bounds(end)
        try:
            return await self.db_client.get_logs_in_range(range_start, range_end)
        except Exception:
            logger.error(f"Failed to read legacy logs between {start} and {end}.", exc_info=True)
            return []
