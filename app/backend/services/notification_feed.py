import logging
from typing import List
from uuid import uuid4

from ..db.redis_client import RedisClient
from ..models.db_models import Notification, NotificationLevel
from ..modules.timekeys import local_now
from .errors import WriteError

logger = logging.getLogger(__name__)


class NotificationFeed:
    """Announcements shown on the kiosk, newest first."""

    def __init__(self, redis_client: RedisClient):
        self.redis_client = redis_client

    async def recent_notifications(self, limit: int = 5) -> List[Notification]:
        try:
            return await self.redis_client.get_recent_notifications(limit)
        except Exception:
            logger.error("Failed to read notifications.", exc_info=True)
            return []

    async def add_notification(self, title: str, content: str, level: NotificationLevel = "info") -> Notification:
        notification = Notification(id=uuid4().hex, title=title, content=content, level=level, created_at=local_now())
        try:
            await self.redis_client.add_notification(notification)
        except Exception as e:
            logger.error(f"Failed to publish notification '{title}'.", exc_info=True)
            raise WriteError("The notification could not be published.") from e
        logger.info(f"Notification '{notification.id}' published ({level}).")
        return notification
