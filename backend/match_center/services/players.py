import re
import logging
from typing import Optional

from ..constants import DEFAULT_PLAYER_AVATAR
from ..errors import ConflictError, DuplicateError, NotFoundError, ValidationError
from ..utils import capitalize, slugify
from .statistics import empty_player_stats

logger = logging.getLogger(__name__)


class PlayerService:
    def __init__(self, players, families, player_stats):
        self.players = players
        self.families = families
        self.player_stats = player_stats

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        first_name = capitalize(data["first_name"])
        last_name = capitalize(data["last_name"])
        if await self.players.find_by_name(first_name, last_name):
            raise DuplicateError(f"Player {first_name} {last_name} already exists.")

        doc = {
            **data,
            "first_name": first_name,
            "last_name": last_name,
            "slug": await self.players.unique_slug(slugify(f"{first_name}-{last_name}")),
            "avatar": data.get("avatar") or DEFAULT_PLAYER_AVATAR,
            "rating": data.get("rating", 0),
            "current_family": None,
        }
        player = await self.players.create(doc, actor_id)
        await self.player_stats.ensure(player["id"], empty_player_stats())
        logger.info(f"Player created: {player['slug']}")
        return player

    async def list(self, status: str = "active", page: int = 1, limit: int = 10, q: Optional[str] = None) -> dict:
        query = {}
        if q:
            pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
            query["$or"] = [{"first_name": pattern}, {"last_name": pattern}, {"slug": pattern}]
        return await self.players.find(query, [("rating", -1), ("last_name", 1)], page, limit, status)

    async def get(self, player_id: str, include_archived: bool = False) -> dict:
        player = await self.players.find_by_id(player_id, include_archived=include_archived)
        if not player:
            raise NotFoundError(f"Player {player_id} not found.")
        return player

    async def get_by_slug(self, slug: str) -> dict:
        player = await self.players.find_by_slug(slug)
        if not player:
            raise NotFoundError(f"Player '{slug}' not found.")
        return player

    async def update(self, player_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        player = await self.get(player_id)
        if "first_name" in data or "last_name" in data:
            first_name = capitalize(data.get("first_name") or player["first_name"])
            last_name = capitalize(data.get("last_name") or player["last_name"])
            if await self.players.find_by_name(first_name, last_name, exclude_id=player_id):
                raise DuplicateError(f"Player {first_name} {last_name} already exists.")
            data = {
                **data,
                "first_name": first_name,
                "last_name": last_name,
                "slug": await self.players.unique_slug(slugify(f"{first_name}-{last_name}"), exclude_id=player_id),
            }
        if not data:
            return player
        return await self.players.update(player_id, data, actor_id=actor_id)

    async def archive(self, player_id: str, actor_id: Optional[str] = None) -> dict:
        player = await self.get(player_id, include_archived=True)
        if player.get("archived_at"):
            raise ConflictError("Player is already archived.")
        if await self.families.find_owned_by(player_id):
            raise ValidationError("Player owns an active family; transfer ownership before archiving.")
        if player.get("current_family"):
            await self.families.remove_member(player["current_family"], player_id)
            await self.players.unset_family(player_id)
        return await self.players.archive(player_id, actor_id)

    async def restore(self, player_id: str, actor_id: Optional[str] = None) -> dict:
        player = await self.get(player_id, include_archived=True)
        if not player.get("archived_at"):
            raise ConflictError("Player is not archived.")
        if await self.players.find_by_name(player["first_name"], player["last_name"], exclude_id=player_id):
            raise ConflictError(f"An active player named {player['first_name']} {player['last_name']} already exists.")
        return await self.players.restore(player_id, actor_id)
