import json
import logging
from typing import Dict, List, Optional, Type, TypeVar
from datetime import datetime
import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from ..models.db_models import (
    User, Team, AttendanceLog, LinkRequest, Notification, MonthlyAttendanceCache
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: Type[ModelT], raw: Optional[str], key: str) -> Optional[ModelT]:
    """Validates a stored document; malformed documents are logged and treated as missing."""
    if not raw:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError:
        logger.warning(f"Skipping malformed {model.__name__} document at '{key}'.", exc_info=True)
        return None


class RedisClient:
    """
    Document store client. Every collection lives in Redis as JSON documents
    with small index sets next to them for equality lookups.
    """

    def __init__(self, pool: Optional[redis.ConnectionPool] = None, client: Optional[redis.Redis] = None):
        self._redis = client if client is not None else redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== Users =====

    async def save_user(self, user: User):
        """Writes the whole user document and keeps the card index in step."""
        key = f"users:{user.uid}"
        previous = _parse(User, await self._redis.get(key), key)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, user.model_dump_json())
            pipe.sadd("users_index:all", user.uid)
            if previous and previous.card_id and previous.card_id != user.card_id:
                pipe.srem(f"users_index:card:{previous.card_id.lower()}", user.uid)
            if user.card_id:
                pipe.sadd(f"users_index:card:{user.card_id.lower()}", user.uid)
            await pipe.execute()

    async def get_user(self, uid: str) -> Optional[User]:
        key = f"users:{uid}"
        return _parse(User, await self._redis.get(key), key)

    async def get_users(self) -> List[User]:
        """Returns every user, ordered by uid."""
        uids = sorted(await self._redis.smembers("users_index:all"))
        if not uids:
            return []
        keys = [f"users:{uid}" for uid in uids]
        documents = await self._redis.mget(keys)
        users = [_parse(User, raw, key) for key, raw in zip(keys, documents)]
        return [user for user in users if user is not None]

    async def get_user_ids_by_card(self, card_id: str) -> List[str]:
        return sorted(await self._redis.smembers(f"users_index:card:{card_id.lower()}"))

    # ===== Teams =====

    async def save_team(self, team: Team):
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(f"teams:{team.id}", team.model_dump_json())
            pipe.sadd("teams_index:all", team.id)
            await pipe.execute()

    async def get_team(self, team_id: str) -> Optional[Team]:
        key = f"teams:{team_id}"
        return _parse(Team, await self._redis.get(key), key)

    async def get_teams(self) -> List[Team]:
        team_ids = sorted(await self._redis.smembers("teams_index:all"))
        if not team_ids:
            return []
        keys = [f"teams:{team_id}" for team_id in team_ids]
        documents = await self._redis.mget(keys)
        teams = [_parse(Team, raw, key) for key, raw in zip(keys, documents)]
        return [team for team in teams if team is not None]

    # ===== Attendance log partitions =====
    # attendances:<YYYY-MM-DD>:logs is a hash of log id -> log document.

    async def add_log(self, date_path: str, log: AttendanceLog):
        """Stores one log in its date partition with a single HSET."""
        await self._redis.hset(f"attendances:{date_path}:logs", log.id, log.model_dump_json())

    async def log_exists(self, date_path: str, log_id: str) -> bool:
        return bool(await self._redis.hexists(f"attendances:{date_path}:logs", log_id))

    async def get_date_logs(self, date_path: str) -> List[AttendanceLog]:
        key = f"attendances:{date_path}:logs"
        documents = await self._redis.hvals(key)
        logs = [_parse(AttendanceLog, raw, key) for raw in documents]
        return [log for log in logs if log is not None]

    async def get_logs_for_dates(self, date_paths: List[str]) -> Dict[str, List[AttendanceLog]]:
        """Reads several partitions in one round trip."""
        if not date_paths:
            return {}
        keys = [f"attendances:{date_path}:logs" for date_path in date_paths]
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hvals(key)
            results = await pipe.execute()

        partitions = {}
        for date_path, key, documents in zip(date_paths, keys, results):
            logs = [_parse(AttendanceLog, raw, key) for raw in documents]
            partitions[date_path] = [log for log in logs if log is not None]
        return partitions

    # ===== Link requests =====

    async def save_link_request(self, link_request: LinkRequest):
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(f"link_requests:{link_request.id}", link_request.model_dump_json())
            pipe.set(f"link_requests_index:token:{link_request.token}", link_request.id)
            await pipe.execute()

    async def get_link_request_by_token(self, token: str) -> Optional[LinkRequest]:
        request_id = await self._redis.get(f"link_requests_index:token:{token}")
        if not request_id:
            return None
        key = f"link_requests:{request_id}"
        return _parse(LinkRequest, await self._redis.get(key), key)

    @staticmethod
    def link_request_channel(token: str) -> str:
        return f"link_requests_channel:{token}"

    async def publish_link_request(self, link_request: LinkRequest) -> int:
        """Announces a changed link request to every subscriber of its token."""
        return await self._redis.publish(self.link_request_channel(link_request.token), link_request.model_dump_json())

    def pubsub(self):
        return self._redis.pubsub()

    # ===== Monthly attendance cache =====

    @staticmethod
    def _cache_key(year: int, month: int) -> str:
        return f"monthly_attendance_cache:{year}_{month:02d}"

    async def get_monthly_cache(self, year: int, month: int) -> Optional[MonthlyAttendanceCache]:
        """Returns the cache record, or None when it is missing or tombstoned."""
        key = self._cache_key(year, month)
        raw = await self._redis.get(key)
        if not raw:
            return None
        if json.loads(raw).get("deleted"):
            return None
        return _parse(MonthlyAttendanceCache, raw, key)

    async def save_monthly_cache(self, cache: MonthlyAttendanceCache):
        key = self._cache_key(cache.year, cache.month)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, cache.model_dump_json())
            pipe.sadd("monthly_attendance_cache_index:all", key)
            await pipe.execute()

    async def tombstone_monthly_cache(self, year: int, month: int, deleted_at: datetime):
        key = self._cache_key(year, month)
        await self._tombstone(key, deleted_at)

    async def tombstone_all_monthly_caches(self, deleted_at: datetime) -> int:
        keys = await self._redis.smembers("monthly_attendance_cache_index:all")
        for key in keys:
            await self._tombstone(key, deleted_at)
        return len(keys)

    async def _tombstone(self, key: str, deleted_at: datetime):
        tombstone = json.dumps({"deleted": True, "deleted_at": deleted_at.isoformat()})
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, tombstone)
            pipe.sadd("monthly_attendance_cache_index:all", key)
            await pipe.execute()

    # ===== Notifications =====

    async def add_notification(self, notification: Notification):
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(f"notifications:{notification.id}", notification.model_dump_json())
            pipe.zadd("notifications_index:by_time", {notification.id: notification.created_at.timestamp()})
            await pipe.execute()

    async def get_recent_notifications(self, limit: int = 5) -> List[Notification]:
        ids = await self._redis.zrevrange("notifications_index:by_time", 0, limit - 1)
        if not ids:
            return []
        keys = [f"notifications:{notification_id}" for notification_id in ids]
        documents = await self._redis.mget(keys)
        notifications = [_parse(Notification, raw, key) for key, raw in zip(keys, documents)]
        return [notification for notification in notifications if notification is not None]
