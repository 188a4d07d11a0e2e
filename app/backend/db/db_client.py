import logging
from typing import AsyncIterator, List, Optional, Sequence
from datetime import datetime
import asyncpg
from pydantic import ValidationError

from ..models.db_models import AttendanceLog
from ..modules.timekeys import ensure_aware, to_wall_time

logger = logging.getLogger(__name__)

_COLUMNS = 'id::text AS id, uid, card_id, type, "timestamp"'


def _to_logs(records) -> List[AttendanceLog]:
    logs = []
    for record in records:
        row = dict(record)
        if isinstance(row.get("timestamp"), datetime):
            row["timestamp"] = ensure_aware(row["timestamp"])
        try:
            logs.append(AttendanceLog(**row))
        except ValidationError:
            logger.warning(f"Skipping malformed legacy log row ({record.get('id')}).", exc_info=True)
    return logs


class AsyncPostgresClient:
    """
    Read access to the legacy flat 'attendance_logs' table, written before logs
    were partitioned by date.

    Its "timestamp" column is `timestamp without time zone` holding wall time in
    the attendance timezone. Bounds are bound as naive wall time and rows come
    back as aware datetimes in that zone.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_user_logs(self, uid: str, start: Optional[datetime] = None, end: Optional[datetime] = None, limit: int = 50) -> List[AttendanceLog]:
        """A user's legacy logs, newest first, optionally bounded to [start, end]."""
        return await self.get_logs_for_users([uid], start, end, limit)

    async def get_logs_for_users(self,
                                 uids: Sequence[str],
                                 start: Optional[datetime] = None,
                                 end: Optional[datetime] = None,
                                 limit: int = 50) -> List[AttendanceLog]:
        """Legacy logs of any of the given users, newest first."""
        if limit <= 0 or not uids:
            return []
        if start is not None and end is not None:
            query = f"""
                SELECT {_COLUMNS} FROM attendance_logs
                WHERE uid = ANY($1::text[]) AND "timestamp" >= $2 AND "timestamp" <= $3
                ORDER BY "timestamp" DESC LIMIT $4;
            """
            args = (list(uids), to_wall_time(start), to_wall_time(end), limit)
        else:
            query = f"""
                SELECT {_COLUMNS} FROM attendance_logs
                WHERE uid = ANY($1::text[]) ORDER BY "timestamp" DESC LIMIT $2;
            """
            args = (list(uids), limit)
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, *args)
            return _to_logs(records)

    async def get_latest_user_log(self, uid: str) -> Optional[AttendanceLog]:
        logs = await self.get_user_logs(uid, limit=1)
        return logs[0] if logs else None

    async def get_logs_in_range(self, start: datetime, end: datetime) -> List[AttendanceLog]:
        """Every legacy log in [start, end], newest first."""
        query = f"""
            SELECT {_COLUMNS} FROM attendance_logs
            WHERE "timestamp" >= $1 AND "timestamp" <= $2
            ORDER BY "timestamp" DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, to_wall_time(start), to_wall_time(end))
            return _to_logs(records)

    async def iter_all_logs(self, batch_size: int = 500) -> AsyncIterator[AttendanceLog]:
        """Streams the whole legacy table in id order, used by the partition migration."""
        query = f"SELECT {_COLUMNS} FROM attendance_logs ORDER BY id;"
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                async for record in connection.cursor(query, prefetch=batch_size):
                    for log in _to_logs([record]):
                        yield log
