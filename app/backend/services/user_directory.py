import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from ..db.redis_client import RedisClient
from ..models.db_models import User, Team
from ..modules.timekeys import local_now
from .errors import DuplicateCardError, NotFoundError, ServiceError, WriteError

logger = logging.getLogger(__name__)

# Fields that identify a record and are never taken from a partial update.
_IMMUTABLE_USER_FIELDS = {"uid", "created_at"}
_IMMUTABLE_TEAM_FIELDS = {"id", "created_at"}


class UserDirectory:
    """
    Users and teams. Reads degrade to empty results on store failures; writes
    raise WriteError.
    """
    def __init__(self, redis_client: RedisClient):
        self.redis_client = redis_client

    async def all_users(self) -> List[User]:
        try:
            return await self.redis_client.get_users()
        except Exception:
            logger.error("Failed to list users.", exc_info=True)
            return []

    async def get_user(self, uid: str) -> Optional[User]:
        try:
            return await self.redis_client.get_user(uid)
        except Exception:
            logger.error(f"Failed to read user '{uid}'.", exc_info=True)
            return None

    async def team_members(self, team_id: str) -> List[User]:
        return [user for user in await self.all_users() if user.team_id == team_id]

    async def search_users(self, text: str) -> List[User]:
        """Case-insensitive match on name or GitHub login, for manual kiosk entry."""
        needle = text.strip().lower()
        if not needle:
            return []
        matches = []
        for user in await self.all_users():
            haystack = " ".join(filter(None, [user.firstname, user.lastname, user.github])).lower()
            if needle in haystack:
                matches.append(user)
        return matches

    async def all_teams(self) -> List[Team]:
        """Every team, de-duplicated by id."""
        try:
            teams = await self.redis_client.get_teams()
        except Exception:
            logger.error("Failed to list teams.", exc_info=True)
            return []
        unique = {}
        for team in teams:
            unique[team.id] = team
        return list(unique.values())

    async def find_by_card_id(self, card_id: str) -> Optional[User]:
        """
        The user owning a card. Lookup is case-insensitive; when several users
        share the card the one with the lowest uid wins.
        Store errors propagate to the caller.
        """
        uids = await self.redis_client.get_user_ids_by_card(card_id)
        if not uids:
            return None
        if len(uids) > 1:
            logger.warning(f"Card '{card_id}' is shared by users {uids}; using '{uids[0]}'.")
        return await self.redis_client.get_user(uids[0])

    async def update_user(self, uid: str, fields: Dict[str, Any]) -> User:
        user = await self.redis_client.get_user(uid)
        if not user:
            raise NotFoundError(f"User '{uid}' not found.")
        changes = {k: v for k, v in fields.items() if k not in _IMMUTABLE_USER_FIELDS}
        try:
            updated = User.model_validate({**user.model_dump(), **changes, "updated_at": local_now()})
        except ValidationError as e:
            raise ServiceError(f"Invalid user fields: {e}") from e
        try:
            await self.redis_client.save_user(updated)
        except Exception as e:
            logger.error(f"Failed to update user '{uid}'.", exc_info=True)
            raise WriteError("The user could not be updated.") from e
        return updated

    async def register_user(self,
                            uid: str,
                            firstname: str,
                            lastname: str,
                            card_id: str,
                            grade: int,
                            team_id: Optional[str] = None,
                            github: Optional[str] = None) -> User:
        """Creates the user record at the end of card registration."""
        owners = [owner for owner in await self.redis_client.get_user_ids_by_card(card_id) if owner != uid]
        if owners:
            logger.warning(f"Registration of card '{card_id}' rejected: already owned by {owners}.")
            raise DuplicateCardError("This card is already registered to another user.")

        now = local_now()
        existing = await self.redis_client.get_user(uid)
        user = User(
            uid=uid,
            firstname=firstname,
            lastname=lastname,
            github=github,
            grade=grade,
            team_id=team_id,
            card_id=card_id,
            role=existing.role if existing else "user",
            status="inactive",
            created_at=existing.created_at if existing and existing.created_at else now,
            updated_at=now
        )
        try:
            await self.redis_client.save_user(user)
        except Exception as e:
            logger.error(f"Failed to register user '{uid}'.", exc_info=True)
            raise WriteError("The user could not be registered.") from e
        logger.info(f"User '{uid}' registered with card '{card_id}'.")
        return user

    async def create_team(self, fields: Dict[str, Any]) -> str:
        now = local_now()
        try:
            team = Team.model_validate({**fields, "id": fields.get("id") or uuid4().hex, "created_at": now, "updated_at": now})
        except ValidationError as e:
            raise ServiceError(f"Invalid team fields: {e}") from e
        try:
            await self.redis_client.save_team(team)
        except Exception as e:
            logger.error(f"Failed to create team '{team.name}'.", exc_info=True)
            raise WriteError("The team could not be created.") from e
        logger.info(f"Team '{team.id}' ({team.name}) created.")
        return team.id

    async def update_team(self, team_id: str, fields: Dict[str, Any]) -> Team:
        team = await self.redis_client.get_team(team_id)
        if not team:
            raise NotFoundError(f"Team '{team_id}' not found.")
        changes = {k: v for k, v in fields.items() if k not in _IMMUTABLE_TEAM_FIELDS}
        try:
            updated = Team.model_validate({**team.model_dump(), **changes, "updated_at": local_now()})
        except ValidationError as e:
            raise ServiceError(f"Invalid team fields: {e}") from e
        try:
            await self.redis_client.save_team(updated)
        except Exception as e:
            logger.error(f"Failed to update team '{team_id}'.", exc_info=True)
            raise WriteError("The team could not be updated.") from e
        return updated
