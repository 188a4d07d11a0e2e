from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ..models.db_models import AttendanceLog, Notification, Team
from ..models.stats_models import DailyStats, DayRecord, TeamBreakdown, TodayStats
from ..services.attendance_service import AttendanceService
from ..services.daily_aggregator import DailyAggregator
from ..services.errors import ServiceError
from ..services.log_store import LogStore
from ..services.monthly_cache import MonthlyCacheManager
from ..services.notification_feed import NotificationFeed
from ..services.user_directory import UserDirectory
from .schemas.dashboard import (
    CacheInvalidationResponse, NotificationCreateRequest, TeamCreatedResponse, TeamCreateRequest, TeamUpdateRequest
)
from .schemas.user import UserResponse, UserStatusResponse, UserUpdateRequest
from .dependencies import (
    get_attendance_service, get_daily_aggregator, get_log_store, get_monthly_cache_manager,
    get_notification_feed, get_user_directory
)
from .utilities.errors import http_error

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


# --- Attendance statistics ---

@router.get("/daily/{target_date}", response_model=List[TeamBreakdown], summary="Team x cohort breakdown of a date")
async def daily_stats(
    target_date: date,
    aggregator: DailyAggregator = Depends(get_daily_aggregator)
):
    return await aggregator.aggregate(target_date)


@router.get("/today", response_model=TodayStats, summary="Present and total members per cohort today")
async def today_stats(aggregator: DailyAggregator = Depends(get_daily_aggregator)):
    return await aggregator.today_stats()


@router.get("/monthly/{year}/{month}", response_model=Dict[str, DailyStats], summary="Per-day breakdowns of a month")
async def monthly_stats(
    year: int = Path(..., ge=2000, le=9999),
    month: int = Path(..., ge=1, le=12),
    manager: MonthlyCacheManager = Depends(get_monthly_cache_manager)
):
    """Served from the monthly cache while the month's logs are unchanged."""
    return await manager.get_monthly_stats(year, month)


@router.delete(
    "/monthly/{year}/{month}/cache",
    response_model=CacheInvalidationResponse,
    summary="Force recomputation of a month"
)
async def invalidate_month(
    year: int = Path(..., ge=2000, le=9999),
    month: int = Path(..., ge=1, le=12),
    manager: MonthlyCacheManager = Depends(get_monthly_cache_manager)
):
    try:
        await manager.invalidate(year, month)
    except ServiceError as e:
        raise http_error(e)
    return CacheInvalidationResponse(invalidated=1)


@router.delete("/monthly/cache", response_model=CacheInvalidationResponse, summary="Force recomputation of every month")
async def invalidate_all_months(manager: MonthlyCacheManager = Depends(get_monthly_cache_manager)):
    try:
        count = await manager.invalidate_all()
    except ServiceError as e:
        raise http_error(e)
    return CacheInvalidationResponse(invalidated=count)


# --- Users ---

@router.get("/users", response_model=List[UserResponse], summary="List users")
async def list_users(directory: UserDirectory = Depends(get_user_directory)):
    return [UserResponse.from_user(user) for user in await directory.all_users()]


@router.get("/users/{uid}", response_model=UserResponse, summary="Get a user")
async def get_user(uid: str, directory: UserDirectory = Depends(get_user_directory)):
    user = await directory.get_user(uid)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User '{uid}' not found.")
    return UserResponse.from_user(user)


@router.patch("/users/{uid}", response_model=UserResponse, summary="Update a user")
async def update_user(
    uid: str,
    body: UserUpdateRequest,
    directory: UserDirectory = Depends(get_user_directory)
):
    try:
        user = await directory.update_user(uid, body.model_dump(exclude_unset=True))
    except ServiceError as e:
        raise http_error(e)
    return UserResponse.from_user(user)


@router.get("/users/{uid}/logs", response_model=List[AttendanceLog], summary="A user's attendance history")
async def user_logs(
    uid: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    log_store: LogStore = Depends(get_log_store)
):
    return await log_store.query_user_logs(uid, start=start, end=end, limit=limit)


@router.get("/users/{uid}/records", response_model=List[DayRecord], summary="A user's check-in and check-out per day")
async def user_records(
    uid: str,
    days: int = Query(30, ge=1, le=366),
    aggregator: DailyAggregator = Depends(get_daily_aggregator)
):
    return await aggregator.user_records(uid, days=days)


@router.get("/users/{uid}/status", response_model=UserStatusResponse, summary="Whether a user is currently in")
async def user_status(uid: str, service: AttendanceService = Depends(get_attendance_service)):
    try:
        current = await service.get_user_status(uid)
    except ServiceError as e:
        raise http_error(e)
    return UserStatusResponse(uid=uid, status=current)


# --- Teams ---

@router.get("/teams", response_model=List[Team], summary="List teams")
async def list_teams(directory: UserDirectory = Depends(get_user_directory)):
    return await directory.all_teams()


@router.get("/teams/{team_id}/members", response_model=List[UserResponse], summary="Members of a team")
async def team_members(team_id: str, directory: UserDirectory = Depends(get_user_directory)):
    return [UserResponse.from_user(user) for user in await directory.team_members(team_id)]


@router.get("/teams/{team_id}/logs", response_model=List[AttendanceLog], summary="Recent logs of a team's members")
async def team_logs(
    team_id: str,
    limit: int = Query(50, ge=1, le=500),
    aggregator: DailyAggregator = Depends(get_daily_aggregator)
):
    return await aggregator.team_logs(team_id, limit=limit)


@router.post(
    "/teams",
    response_model=TeamCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a team"
)
async def create_team(body: TeamCreateRequest, directory: UserDirectory = Depends(get_user_directory)):
    try:
        team_id = await directory.create_team(body.model_dump())
    except ServiceError as e:
        raise http_error(e)
    return TeamCreatedResponse(id=team_id)


@router.patch("/teams/{team_id}", response_model=Team, summary="Update a team")
async def update_team(
    team_id: str,
    body: TeamUpdateRequest,
    directory: UserDirectory = Depends(get_user_directory)
):
    try:
        return await directory.update_team(team_id, body.model_dump(exclude_unset=True))
    except ServiceError as e:
        raise http_error(e)


# --- Notifications ---

@router.post(
    "/notifications",
    response_model=Notification,
    status_code=status.HTTP_201_CREATED,
    summary="Publish an announcement to the kiosk"
)
async def publish_notification(
    body: NotificationCreateRequest,
    feed: NotificationFeed = Depends(get_notification_feed)
):
    try:
        return await feed.add_notification(body.title, body.content, body.level)
    except ServiceError as e:
        raise http_error(e)
