import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

from app.backend.api.dependencies import (
    get_attendance_service, get_daily_aggregator, get_log_store, get_monthly_cache_manager,
    get_notification_feed, get_user_directory
)
from app.backend.models.db_models import AttendanceLog, Notification, Team, User
from app.backend.models.stats_models import (
    DailyStats, DayRecord, GradeBreakdown, MemberPresence, TeamBreakdown, TodayStats
)
from app.backend.services.errors import NotFoundError, ServiceError, WriteError

NOW = datetime(2025, 4, 1, 9, tzinfo=ZoneInfo("Asia/Tokyo"))


def breakdown() -> list:
    member = MemberPresence(uid="u1", firstname="Taro", lastname="Yamada", is_present=True)
    return [TeamBreakdown(team_id="t1", team_name="Robotics", grade_stats=[
        GradeBreakdown(grade=10, count=1, total=1, users=[member])
    ])]


@pytest.mark.asyncio
class TestStatisticsAPI:

    async def test_daily(self, api_client, override):
        aggregator = override(get_daily_aggregator, AsyncMock())
        aggregator.aggregate.return_value = breakdown()

        response = await api_client.get("/dashboard/daily/2025-04-01")

        assert response.status_code == 200
        assert response.json()[0]["grade_stats"][0]["users"][0]["is_present"] is True
        aggregator.aggregate.assert_awaited_once_with(date(2025, 4, 1))

    async def test_daily_rejects_bad_date(self, api_client, override):
        override(get_daily_aggregator, AsyncMock())
        response = await api_client.get("/dashboard/daily/2025-13-01")
        assert response.status_code == 422

    async def test_today(self, api_client, override):
        aggregator = override(get_daily_aggregator, AsyncMock())
        aggregator.today_stats.return_value = TodayStats(
            day=date(2025, 4, 1), total_users=1, present_users=1, grade_stats=breakdown()[0].grade_stats
        )

        response = await api_client.get("/dashboard/today")

        assert response.status_code == 200
        body = response.json()
        assert (body["day"], body["total_users"], body["present_users"]) == ("2025-04-01", 1, 1)
        assert body["grade_stats"][0]["grade"] == 10

    async def test_monthly(self, api_client, override):
        manager = override(get_monthly_cache_manager, AsyncMock())
        manager.get_monthly_stats.return_value = {
            "2025-04-01": DailyStats(total_count=1, team_stats=breakdown()),
            "2025-04-02": DailyStats(),
        }

        response = await api_client.get("/dashboard/monthly/2025/4")

        assert response.status_code == 200
        body = response.json()
        assert body["2025-04-01"]["total_count"] == 1
        assert body["2025-04-02"] == {"total_count": 0, "team_stats": []}
        manager.get_monthly_stats.assert_awaited_once_with(2025, 4)

    async def test_monthly_rejects_bad_month(self, api_client, override):
        override(get_monthly_cache_manager, AsyncMock())
        response = await api_client.get("/dashboard/monthly/2025/13")
        assert response.status_code == 422

    async def test_invalidate_month(self, api_client, override):
        manager = override(get_monthly_cache_manager, AsyncMock())

        response = await api_client.delete("/dashboard/monthly/2025/4/cache")

        assert response.status_code == 200
        manager.invalidate.assert_awaited_once_with(2025, 4)

    async def test_invalidate_month_failure(self, api_client, override):
        manager = override(get_monthly_cache_manager, AsyncMock())
        manager.invalidate.side_effect = WriteError("The monthly cache could not be invalidated.")

        response = await api_client.delete("/dashboard/monthly/2025/4/cache")

        assert response.status_code == 503

    async def test_invalidate_all(self, api_client, override):
        manager = override(get_monthly_cache_manager, AsyncMock())
        manager.invalidate_all.return_value = 7

        response = await api_client.delete("/dashboard/monthly/cache")

        assert response.json() == {"invalidated": 7}


@pytest.mark.asyncio
class TestUsersAPI:

    async def test_list_users(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.all_users.return_value = [User(uid="u1", firstname="Taro", lastname="Yamada")]

        response = await api_client.get("/dashboard/users")

        assert [user["uid"] for user in response.json()] == ["u1"]

    async def test_get_unknown_user(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.get_user.return_value = None

        response = await api_client.get("/dashboard/users/nobody")

        assert response.status_code == 404

    async def test_patch_user_sends_only_given_fields(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.update_user.return_value = User(uid="u1", firstname="Taro", lastname="Yamada", team_id="t2")

        response = await api_client.patch("/dashboard/users/u1", json={"team_id": "t2"})

        assert response.status_code == 200
        directory.update_user.assert_awaited_once_with("u1", {"team_id": "t2"})

    async def test_patch_unknown_user(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.update_user.side_effect = NotFoundError("User 'nobody' not found.")

        response = await api_client.patch("/dashboard/users/nobody", json={"grade": 9})

        assert response.status_code == 404

    async def test_user_logs(self, api_client, override):
        log_store = override(get_log_store, AsyncMock())
        log_store.query_user_logs.return_value = [AttendanceLog(id="l1", uid="u1", type="entry", timestamp=NOW)]

        response = await api_client.get("/dashboard/users/u1/logs", params={"start": "2025-04-01", "limit": 10})

        assert [log["id"] for log in response.json()] == ["l1"]
        log_store.query_user_logs.assert_awaited_once_with("u1", start=date(2025, 4, 1), end=None, limit=10)

    async def test_user_records(self, api_client, override):
        aggregator = override(get_daily_aggregator, AsyncMock())
        aggregator.user_records.return_value = [DayRecord(day=date(2025, 4, 1), check_in=NOW)]

        response = await api_client.get("/dashboard/users/u1/records", params={"days": 7})

        assert response.status_code == 200
        assert response.json()[0]["day"] == "2025-04-01"
        assert response.json()[0]["check_out"] is None
        aggregator.user_records.assert_awaited_once_with("u1", days=7)

    async def test_user_records_rejects_bad_days(self, api_client, override):
        override(get_daily_aggregator, AsyncMock())
        response = await api_client.get("/dashboard/users/u1/records", params={"days": 0})
        assert response.status_code == 422

    async def test_user_status(self, api_client, override):
        service = override(get_attendance_service, AsyncMock())
        service.get_user_status.return_value = "unknown"

        response = await api_client.get("/dashboard/users/u1/status")

        assert response.json() == {"uid": "u1", "status": "unknown"}

    async def test_user_status_failure(self, api_client, override):
        service = override(get_attendance_service, AsyncMock())
        service.get_user_status.side_effect = ServiceError("The attendance status could not be determined.")

        response = await api_client.get("/dashboard/users/u1/status")

        assert response.status_code == 400


@pytest.mark.asyncio
class TestTeamsAndNotificationsAPI:

    async def test_teams(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.all_teams.return_value = [Team(id="t1", name="Robotics")]
        directory.team_members.return_value = [User(uid="u1", firstname="Taro", lastname="Yamada", team_id="t1")]

        teams = await api_client.get("/dashboard/teams")
        members = await api_client.get("/dashboard/teams/t1/members")

        assert teams.json()[0]["name"] == "Robotics"
        assert members.json()[0]["uid"] == "u1"

    async def test_team_logs(self, api_client, override):
        aggregator = override(get_daily_aggregator, AsyncMock())
        aggregator.team_logs.return_value = [AttendanceLog(id="l1", uid="u1", type="entry", timestamp=NOW)]

        response = await api_client.get("/dashboard/teams/t1/logs")

        assert [log["id"] for log in response.json()] == ["l1"]
        aggregator.team_logs.assert_awaited_once_with("t1", limit=50)

    async def test_create_team(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.create_team.return_value = "t9"

        response = await api_client.post("/dashboard/teams", json={"name": "Web"})

        assert response.status_code == 201
        assert response.json() == {"id": "t9"}
        directory.create_team.assert_awaited_once_with({"name": "Web", "leader_uid": None})

    async def test_update_team(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.update_team.return_value = Team(id="t1", name="Web")

        response = await api_client.patch("/dashboard/teams/t1", json={"name": "Web"})

        assert response.json()["name"] == "Web"
        directory.update_team.assert_awaited_once_with("t1", {"name": "Web"})

    async def test_publish_notification(self, api_client, override):
        feed = override(get_notification_feed, AsyncMock())
        feed.add_notification.return_value = Notification(id="n1", title="Hi", content="c", level="warning", created_at=NOW)

        response = await api_client.post("/dashboard/notifications", json={"title": "Hi", "content": "c", "level": "warning"})

        assert response.status_code == 201
        feed.add_notification.assert_awaited_once_with("Hi", "c", "warning")


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("http://test/health")
    assert response.json()["status"] == "ok"
