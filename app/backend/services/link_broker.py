import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import urlencode
from uuid import uuid4

from pydantic import ValidationError

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..models.db_models import LinkRequest, LinkStatus, User
from ..modules.timekeys import local_now
from .errors import LinkStateError, NotFoundError, WriteError
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

# Link requests only move forward: waiting -> opened -> done.
_STATUS_ORDER: Dict[str, int] = {"waiting": 0, "opened": 1, "done": 2}

LinkCallback = Callable[[LinkStatus, LinkRequest], Union[None, Awaitable[None]]]


class Subscription:
    """Handle of a running subscribe() watcher. Close it when the caller goes away."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def close(self):
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class RegistrationLinkBroker:
    """
    Pairs an unregistered card scanned at the kiosk with a user account created
    on another device. The kiosk creates a request and shows a link; the
    registration page opens it and completes it; the kiosk watches the changes.
    """
    def __init__(self, redis_client: RedisClient, user_directory: UserDirectory):
        self.redis_client = redis_client
        self.user_directory = user_directory

    async def create(self, token: str, card_id: Optional[str] = None) -> str:
        now = local_now()
        link_request = LinkRequest(
            id=uuid4().hex, token=token, status="waiting", card_id=card_id, created_at=now, updated_at=now
        )
        try:
            await self.redis_client.save_link_request(link_request)
        except Exception as e:
            logger.error(f"Failed to create link request for token '{token}'.", exc_info=True)
            raise WriteError("The link request could not be created.") from e
        logger.info(f"Link request '{link_request.id}' created.")
        return link_request.id

    async def get(self, token: str) -> LinkRequest:
        link_request = await self.redis_client.get_link_request_by_token(token)
        if not link_request:
            raise NotFoundError(f"No link request for token '{token}'.")
        return link_request

    async def update_status(self,
                            token: str,
                            status: LinkStatus,
                            card_id: Optional[str] = None,
                            uid: Optional[str] = None) -> LinkRequest:
        """
        Moves the request to status and announces it on the token's channel.
        Setting the current status again is allowed; going back is not.
        """
        current = await self.get(token)
        if _STATUS_ORDER[status] < _STATUS_ORDER[current.status]:
            raise LinkStateError(f"Link request cannot go from '{current.status}' to '{status}'.")

        changes: Dict[str, Any] = {"status": status, "updated_at": local_now()}
        if card_id is not None:
            changes["card_id"] = card_id
        if uid is not None:
            changes["uid"] = uid
        updated = current.model_copy(update=changes)

        try:
            await self.redis_client.save_link_request(updated)
        except Exception as e:
            logger.error(f"Failed to update link request '{current.id}'.", exc_info=True)
            raise WriteError("The link request status could not be updated.") from e

        try:
            await self.redis_client.publish_link_request(updated)
        except Exception:
            # Watchers re-read the record when they (re)connect.
            logger.error(f"Failed to publish the change of link request '{current.id}'.", exc_info=True)

        logger.info(f"Link request '{current.id}': {current.status} -> {status}.")
        return updated

    async def open(self, token: str) -> LinkRequest:
        return await self.update_status(token, "opened")

    async def complete(self, token: str, card_id: str, fields: Dict[str, Any]) -> User:
        """Registers the user behind an opened request and marks it done."""
        current = await self.get(token)
        if current.status != "opened":
            raise LinkStateError(f"Link request is '{current.status}', expected 'opened'.")

        user = await self.user_directory.register_user(
            uid=fields["uid"],
            firstname=fields["firstname"],
            lastname=fields["lastname"],
            card_id=card_id,
            grade=fields["grade"],
            team_id=fields.get("team_id"),
            github=fields.get("github")
        )
        await self.update_status(token, "done", card_id=card_id, uid=user.uid)
        return user

    async def watch(self,
                    token: str,
                    stop_when: Optional[Callable[[], Awaitable[bool]]] = None) -> AsyncIterator[LinkRequest]:
        """
        Yields the current record, then every published change, and stops
        after 'done'. The channel is subscribed before the first read so no
        change between the two is lost.

        stop_when is awaited before every poll; the watch ends once it returns
        True, even while no change arrives.
        """
        channel = RedisClient.link_request_channel(token)
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(channel)
        try:
            current = await self.get(token)
            yield current
            if current.status == "done":
                return

            while True:
                if stop_when is not None and await stop_when():
                    logger.info(f"Stopped watching link request '{current.id}'.")
                    return
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=settings.LINK_WATCH_POLL_SECONDS
                )
                if message is None:
                    continue
                try:
                    link_request = LinkRequest.model_validate_json(message["data"])
                except ValidationError:
                    logger.warning(f"Ignoring malformed message on '{channel}'.", exc_info=True)
                    continue
                yield link_request
                if link_request.status == "done":
                    return
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    def subscribe(self, token: str, callback: LinkCallback) -> Subscription:
        """Calls callback(status, record) for the current record and each change."""
        async def run():
            try:
                async for link_request in self.watch(token):
                    result = callback(link_request.status, link_request)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error(f"Link request watcher for token '{token}' stopped.", exc_info=True)

        return Subscription(asyncio.create_task(run()))

    @staticmethod
    def registration_url(token: str, card_id: str) -> str:
        return f"{settings.APP_BASE_URL}/register?{urlencode({'token': token, 'cardId': card_id})}"
