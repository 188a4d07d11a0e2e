#app/backend/api/dependencies.py
from typing import Optional

from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..services.log_store import LogStore
from ..services.user_directory import UserDirectory
from ..services.attendance_service import AttendanceService
from ..services.daily_aggregator import DailyAggregator
from ..services.monthly_cache import MonthlyCacheManager
from ..services.link_broker import RegistrationLinkBroker
from ..services.notification_feed import NotificationFeed


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """The Redis pool created in the application lifespan."""
    return request.app.state.redis_pool


def get_postgres_pool(request: Request) -> Optional[asyncpg.Pool]:
    """The legacy PostgreSQL pool, or None when DATABASE_URL is not configured."""
    return getattr(request.app.state, "postgres_pool", None)


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)


def get_db_client(postgres_pool: Optional[asyncpg.Pool] = Depends(get_postgres_pool)) -> Optional[AsyncPostgresClient]:
    if postgres_pool is None:
        return None
    return AsyncPostgresClient(pool=postgres_pool)


# Services are built per request on top of the shared pools.

def get_log_store(
    redis_client: RedisClient = Depends(get_redis_client),
    db_client: Optional[AsyncPostgresClient] = Depends(get_db_client)
) -> LogStore:
    return LogStore(redis_client=redis_client, db_client=db_client)


def get_user_directory(redis_client: RedisClient = Depends(get_redis_client)) -> UserDirectory:
    return UserDirectory(redis_client=redis_client)


def get_attendance_service(
    log_store: LogStore = Depends(get_log_store),
    user_directory: UserDirectory = Depends(get_user_directory)
) -> AttendanceService:
    return AttendanceService(log_store=log_store, user_directory=user_directory)


def get_daily_aggregator(
    log_store: LogStore = Depends(get_log_store),
    user_directory: UserDirectory = Depends(get_user_directory)
) -> DailyAggregator:
    return DailyAggregator(log_store=log_store, user_directory=user_directory)


def get_monthly_cache_manager(
    redis_client: RedisClient = Depends(get_redis_client),
    log_store: LogStore = Depends(get_log_store),
    user_directory: UserDirectory = Depends(get_user_directory),
    daily_aggregator: DailyAggregator = Depends(get_daily_aggregator)
) -> MonthlyCacheManager:
    return MonthlyCacheManager(
        redis_client=redis_client,
        log_store=log_store,
        user_directory=user_directory,
        daily_aggregator=daily_aggregator
    )


def get_link_broker(
    redis_client: RedisClient = Depends(get_redis_client),
    user_directory: UserDirectory = Depends(get_user_directory)
) -> RegistrationLinkBroker:
    return RegistrationLinkBroker(redis_client=redis_client, user_directory=user_directory)


def get_notification_feed(redis_client: RedisClient = Depends(get_redis_client)) -> NotificationFeed:
    return NotificationFeed(redis_client=redis_client)
