import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

from app.backend.api.dependencies import (
    get_attendance_service, get_link_broker, get_notification_feed, get_user_directory
)
from app.backend.models.db_models import LinkRequest, Notification, User
from app.backend.services.attendance_service import ToggleResult
from app.backend.services.errors import NotFoundError

TOKYO = ZoneInfo("Asia/Tokyo")
NOW = datetime(2025, 4, 1, 9, tzinfo=TOKYO)


def link_request(status: str) -> LinkRequest:
    return LinkRequest(id="r1", token="tok", status=status, created_at=NOW, updated_at=NOW)


@pytest.mark.asyncio
class TestKioskAPI:

    async def test_scan(self, api_client, override):
        service = override(get_attendance_service, AsyncMock())
        service.toggle_by_card.return_value = ToggleResult(
            status="success", action="entry", user_name="Yamada Taro",
            message="ようこそ、Yamada Taroさん", sub_message="出勤を記録しました"
        )

        response = await api_client.post("/kiosk/scan", json={"card_id": "CARD-1"})

        assert response.status_code == 200
        assert response.json()["action"] == "entry"
        service.toggle_by_card.assert_awaited_once_with("CARD-1")

    async def test_scan_unregistered_is_not_an_http_error(self, api_client, override):
        service = override(get_attendance_service, AsyncMock())
        service.toggle_by_card.return_value = ToggleResult(status="unregistered", message="未登録のカードです")

        response = await api_client.post("/kiosk/scan", json={"card_id": "NEW"})

        assert response.status_code == 200
        assert response.json()["status"] == "unregistered"

    async def test_scan_rejects_empty_card(self, api_client, override):
        override(get_attendance_service, AsyncMock())
        response = await api_client.post("/kiosk/scan", json={"card_id": ""})
        assert response.status_code == 422

    async def test_manual(self, api_client, override):
        service = override(get_attendance_service, AsyncMock())
        service.record_manual.return_value = ToggleResult(status="success", action="exit", message="ok")

        response = await api_client.post("/kiosk/manual", json={"uid": "u1", "type": "exit"})

        assert response.status_code == 200
        service.record_manual.assert_awaited_once_with("u1", "exit")

    async def test_search_users_adds_grade_label(self, api_client, override):
        directory = override(get_user_directory, AsyncMock())
        directory.search_users.return_value = [User(uid="u1", firstname="Taro", lastname="Yamada", grade=10)]

        response = await api_client.get("/kiosk/users/search", params={"q": "yama"})

        assert response.status_code == 200
        body = response.json()
        assert body[0]["uid"] == "u1"
        assert "10期生" in body[0]["grade_label"]

    async def test_notifications(self, api_client, override):
        feed = override(get_notification_feed, AsyncMock())
        feed.recent_notifications.return_value = [Notification(id="n1", title="Hi", content="", created_at=NOW)]

        response = await api_client.get("/kiosk/notifications")

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == ["n1"]
        feed.recent_notifications.assert_awaited_once_with(5)

    async def test_create_link_request(self, api_client, override):
        broker = override(get_link_broker, MagicMock())
        broker.create = AsyncMock(return_value="r1")
        broker.registration_url.return_value = "http://localhost:3000/register?token=t&cardId=NEW"

        response = await api_client.post("/kiosk/link-requests", json={"card_id": "NEW"})

        assert response.status_code == 201
        body = response.json()
        assert body["request_id"] == "r1"
        assert body["token"]
        assert broker.create.await_args.kwargs == {"card_id": "NEW"}

    async def test_link_request_events(self, api_client, override):
        broker = override(get_link_broker, MagicMock())
        broker.get = AsyncMock(return_value=link_request("waiting"))

        stop_checks = []

        async def watch(token, stop_when=None):
            stop_checks.append(stop_when)
            for status in ("waiting", "opened", "done"):
                yield link_request(status)

        broker.watch = watch

        response = await api_client.get("/kiosk/link-requests/tok/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.count("event: status") == 3
        assert '"status":"done"' in response.text
        assert stop_checks and callable(stop_checks[0])

    async def test_link_request_events_unknown_token(self, api_client, override):
        broker = override(get_link_broker, MagicMock())
        broker.get = AsyncMock(side_effect=NotFoundError("No link request for token 'x'."))

        response = await api_client.get("/kiosk/link-requests/x/events")

        assert response.status_code == 404
