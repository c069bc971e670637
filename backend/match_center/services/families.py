import re
import logging
from typing import Optional

from ..constants import COMPLETED, FAMILY_ROLE_MEMBER, FAMILY_ROLE_OWNER
from ..errors import ConflictError, DuplicateError, NotFoundError, ValidationError
from ..utils import capitalize, now_iso, slugify
from .statistics import empty_family_stats

logger = logging.getLogger(__name__)


class FamilyService:
    def __init__(self, families, players, tournaments, family_stats):
        self.families = families
        self.players = players
        self.tournaments = tournaments
        self.family_stats = family_stats

    async def _validate_name_uniqueness(self, name: str, family_id: Optional[str] = None):
        if await self.families.find_active_by_name(name, exclude_id=family_id):
            raise DuplicateError(f"An active family named '{name}' already exists.")

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        owner = await self.players.find_by_id(data["owner"])
        if not owner:
            raise NotFoundError("Owner player not found or archived.")
        if owner.get("current_family"):
            raise ConflictError("Player already belongs to a family and cannot become an owner.")
        await self._validate_name_uniqueness(data["name"])

        doc = {
            **data,
            "display_last_name": capitalize(data["display_last_name"]),
            "slug": await self.families.unique_slug(slugify(data["name"])),
            "rating": 0,
            "members": [{"player": owner["id"], "role": FAMILY_ROLE_OWNER, "joined_at": now_iso()}],
        }
        family = await self.families.create(doc, actor_id)
        await self.players.set_family(owner["id"], family["id"])
        await self.family_stats.ensure(family["id"], empty_family_stats())
        logger.info(f"Family created: {family['slug']} (owner {owner['slug']})")
        return family

    async def list(self, status: str = "active", page: int = 1, limit: int = 10, q: Optional[str] = None) -> dict:
        query = {}
        if q:
            query["name"] = {"$regex": re.escape(q.strip()), "$options": "i"}
        return await self.families.find(query, [("rating", -1), ("name", 1)], page, limit, status)

    async def get(self, family_id: str, include_archived: bool = False) -> dict:
        family = await self.families.find_by_id(family_id, include_archived=include_archived)
        if not family:
            raise NotFoundError("Family not found or archived.")
        return family

    async def update(self, family_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        family = await self.get(family_id)
        if data.get("name") and data["name"].lower() != family["name"].lower():
            await self._validate_name_uniqueness(data["name"], family_id)
            data["slug"] = await self.families.unique_slug(slugify(data["name"]), exclude_id=family_id)
        if data.get("display_last_name"):
            data["display_last_name"] = capitalize(data["display_last_name"])
        if not data:
            return family
        return await self.families.update(family_id, data, actor_id=actor_id)

    async def add_member(self, family_id: str, player_id: str) -> dict:
        family = await self.get(family_id)
        player = await self.players.find_by_id(player_id)
        if not player:
            raise NotFoundError("Player not found or archived.")
        if any(m["player"] == player_id for m in family.get("members", [])):
            raise ConflictError("Player is already a member of this family.")
        if player.get("current_family"):
            raise ConflictError("Player already belongs to another family.")
        updated = await self.families.add_member(
            family_id, {"player": player_id, "role": FAMILY_ROLE_MEMBER, "joined_at": now_iso()})
        await self.players.set_family(player_id, family_id)
        return updated

    async def remove_member(self, family_id: str, player_id: str) -> dict:
        family = await self.get(family_id)
        if not any(m["player"] == player_id for m in family.get("members", [])):
            raise NotFoundError("Player is not a member of this family.")
        if family["owner"] == player_id:
            raise ValidationError("The owner cannot be removed; change the owner first.")
        updated = await self.families.remove_member(family_id, player_id)
        await self.players.unset_family(player_id)
        return updated

    async def change_owner(self, family_id: str, new_owner_id: str) -> dict:
        family = await self.get(family_id)
        if not await self.players.find_by_id(new_owner_id):
            raise NotFoundError("New owner candidate not found.")
        if family["owner"] == new_owner_id:
            raise ConflictError("This player already owns the family.")
        if not any(m["player"] == new_owner_id for m in family.get("members", [])):
            raise ValidationError("The new owner must be a member of the family.")
        return await self.families.change_owner(family, new_owner_id, FAMILY_ROLE_OWNER)

    async def archive(self, family_id: str, actor_id: Optional[str] = None) -> dict:
        family = await self.get(family_id, include_archived=True)
        if family.get("archived_at"):
            raise ConflictError("Family is already archived.")
        running = await self.tournaments.find_one(
            {"participants.family": family_id, "status": {"$ne": COMPLETED}})
        if running:
            raise ConflictError(f"Family takes part in the unfinished tournament '{running['name']}'.")
        return await self.families.archive(family_id, actor_id)

    async def restore(self, family_id: str, actor_id: Optional[str] = None) -> dict:
        family = await self.get(family_id, include_archived=True)
        if not family.get("archived_at"):
            raise ConflictError("Family is not archived.")
        await self._validate_name_uniqueness(family["name"], family_id)
        if await self.families.find_one({"slug": family["slug"], "id": {"$ne": family_id}}):
            await self.families.update(
                family_id, {"slug": await self.families.unique_slug(family["slug"], exclude_id=family_id)},
                include_archived=True, actor_id=actor_id)
        return await self.families.restore(family_id, actor_id)
