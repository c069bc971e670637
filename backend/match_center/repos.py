import re
import math
import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .cache import CacheTags, TaggedCache
from .errors import ConflictError, NotFoundError
from .search_queue import SearchQueue
from .utils import diff_fields, new_id, now_iso

logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}


def status_filter(status: str) -> dict:
    if status == "active":
        return {"archived_at": None}
    if status == "archived":
        return {"archived_at": {"$ne": None}}
    return {}


def name_pattern(name: str) -> dict:
    return {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}


async def paginate(collection, query: dict, sort=None, page: int = 1, limit: int = 10) -> dict:
    page = page or 1
    limit = limit or 10
    cursor = collection.find(query, NO_ID)
    if sort:
        cursor = cursor.sort(sort)
    data = await cursor.skip((page - 1) * limit).limit(limit).to_list(limit)
    total = await collection.count_documents(query)
    return {
        "data": data,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }


# ─── Audit Log ───

class AuditLogRepo:
    def __init__(self, db):
        self.collection = db.audit_logs

    async def record(self, entity: str, entity_id: str, action: str, changes: Optional[dict] = None,
                     actor_id: Optional[str] = None, context: Optional[str] = None):
        doc = {
            "id": new_id(), "entity": entity, "entity_id": entity_id, "action": action,
            "changes": changes or {}, "actor_id": actor_id, "context": context,
            "timestamp": now_iso(),
        }
        try:
            await self.collection.insert_one(doc)
        except PyMongoError as e:
            # A lost audit entry must never fail the mutation it describes
            logger.error(f"Audit log write failed for {entity}:{entity_id} ({action}): {e}")

    async def find(self, entity: Optional[str] = None, entity_id: Optional[str] = None,
                   page: int = 1, limit: int = 20) -> dict:
        query = {}
        if entity:
            query["entity"] = entity
        if entity_id:
            query["entity_id"] = entity_id
        return await paginate(self.collection, query, [("timestamp", -1)], page, limit)


# ─── Entity Repositories ───

class BaseRepo:
    """Archivable entity collection with audit, cache and search-sync hooks."""

    collection_name: str = None
    entity: str = None
    cache_prefix: str = None
    searchable = False
    default_sort = [("created_at", -1)]

    def __init__(self, db, cache: TaggedCache, audit: AuditLogRepo, search_queue: SearchQueue):
        if type(self) is BaseRepo:
            raise TypeError("BaseRepo is abstract")
        self.db = db
        self.collection = db[self.collection_name]
        self.cache = cache
        self.audit = audit
        self.search_queue = search_queue

    def cache_key(self, entity_id: str) -> str:
        return f"{self.cache_prefix}:{entity_id}"

    def cache_tags(self, doc: dict) -> list:
        return [CacheTags.entity(self.cache_prefix, doc["id"]), CacheTags.entity_list(self.cache_prefix)]

    async def find(self, query: Optional[dict] = None, sort=None, page: int = 1, limit: int = 10,
                   status: str = "active") -> dict:
        final_query = {**(query or {}), **status_filter(status)}
        return await paginate(self.collection, final_query, sort or self.default_sort, page, limit)

    async def find_all(self, query: Optional[dict] = None, include_archived: bool = False, sort=None) -> list:
        final_query = dict(query or {})
        if not include_archived:
            final_query["archived_at"] = None
        cursor = self.collection.find(final_query, NO_ID)
        if sort:
            cursor = cursor.sort(sort)
        return await cursor.to_list(None)

    async def find_by_id(self, entity_id: str, include_archived: bool = False) -> Optional[dict]:
        if include_archived:
            return await self.collection.find_one({"id": entity_id}, NO_ID)

        async def load():
            return await self.collection.find_one({"id": entity_id, "archived_at": None}, NO_ID)

        doc = await self.cache.get_or_set(self.cache_key(entity_id), load,
                                          tags=[CacheTags.entity(self.cache_prefix, entity_id)])
        if doc and doc.get("archived_at"):
            return None
        return doc

    async def find_one(self, query: dict, include_archived: bool = False) -> Optional[dict]:
        final_query = dict(query)
        if not include_archived:
            final_query["archived_at"] = None
        return await self.collection.find_one(final_query, NO_ID)

    async def unique_slug(self, base: str, exclude_id: Optional[str] = None) -> str:
        """Returns ``base`` or ``base-N``, free across active and archived documents."""
        slug, n = base, 1
        while True:
            query = {"slug": slug}
            if exclude_id:
                query["id"] = {"$ne": exclude_id}
            if not await self.collection.find_one(query, {"_id": 0, "id": 1}):
                return slug
            n += 1
            slug = f"{base}-{n}"

    async def count(self, query: Optional[dict] = None, status: str = "active") -> int:
        return await self.collection.count_documents({**(query or {}), **status_filter(status)})

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        ts = now_iso()
        doc = {"id": new_id(), "archived_at": None, "created_at": ts, "updated_at": ts, **data}
        await self.collection.insert_one(doc)
        doc.pop("_id", None)
        await self._after_write(doc, "create", dict(doc), actor_id)
        return doc

    async def update(self, entity_id: str, data: dict, include_archived: bool = False,
                     action: str = "update", actor_id: Optional[str] = None) -> dict:
        before = await self.find_by_id(entity_id, include_archived=include_archived)
        if not before:
            raise NotFoundError(f"{self.entity} {entity_id} not found.")
        after = await self.collection.find_one_and_update(
            {"id": entity_id},
            {"$set": {**data, "updated_at": now_iso()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        await self._after_write(after, action, diff_fields(before, after), actor_id)
        return after

    async def modify(self, entity_id: str, operations: dict, action: str = "update",
                     actor_id: Optional[str] = None, audit: bool = True) -> Optional[dict]:
        """Applies raw update operators atomically; returns None when nothing matched."""
        operations = dict(operations)
        operations["$set"] = {**operations.get("$set", {}), "updated_at": now_iso()}
        after = await self.collection.find_one_and_update(
            {"id": entity_id}, operations, projection=NO_ID, return_document=ReturnDocument.AFTER,
        )
        if after is None:
            return None
        changes = {op: value for op, value in operations.items() if op != "$set"} if audit else None
        await self._after_write(after, action, changes, actor_id, audit=audit)
        return after

    async def archive(self, entity_id: str, actor_id: Optional[str] = None) -> dict:
        before = await self.find_by_id(entity_id, include_archived=True)
        if not before:
            raise NotFoundError(f"{self.entity} {entity_id} not found for archiving.")
        archived_at = now_iso()
        after = await self.collection.find_one_and_update(
            {"id": entity_id},
            {"$set": {"archived_at": archived_at, "updated_at": archived_at}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        await self._after_write(after, "archive", {"archived_at": {"from": before.get("archived_at"), "to": archived_at}}, actor_id)
        return after

    async def restore(self, entity_id: str, actor_id: Optional[str] = None) -> dict:
        before = await self.find_by_id(entity_id, include_archived=True)
        if not before:
            raise NotFoundError(f"{self.entity} {entity_id} not found for restoring.")
        after = await self.collection.find_one_and_update(
            {"id": entity_id},
            {"$set": {"archived_at": None, "updated_at": now_iso()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        await self._after_write(after, "restore", {"archived_at": {"from": before.get("archived_at"), "to": None}}, actor_id)
        return after

    async def invalidate(self, doc: dict):
        await self.cache.invalidate(self.cache_key(doc["id"]))
        await self.cache.invalidate_by_tags(self.cache_tags(doc))

    async def _after_write(self, doc: dict, action: str, changes, actor_id=None, audit: bool = True):
        if audit:
            await self.audit.record(self.entity, doc["id"], action, changes, actor_id)
        await self.invalidate(doc)
        if self.searchable:
            await self.search_queue.enqueue("update", self.entity, doc["id"])


class RatingMixin:
    rating_write_attempts = 5

    async def increment_rating(self, entity_id: str, amount) -> tuple:
        """Adds ``amount`` without letting the rating drop below zero.

        The write only lands if the rating is still the one read, so ``previous``
        is exact under concurrent updates. Returns ``(previous_rating, new_rating)``.
        """
        for _ in range(self.rating_write_attempts):
            current = await self.collection.find_one({"id": entity_id}, {"_id": 0, "rating": 1})
            if current is None:
                raise NotFoundError(f"{self.entity} {entity_id} not found.")
            previous = current.get("rating") or 0
            new = max(0, previous + amount)
            doc = await self.collection.find_one_and_update(
                {"id": entity_id, "rating": current.get("rating")}, {"$set": {"rating": new}},
                projection=NO_ID, return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                await self.invalidate(doc)
                return previous, new
        raise ConflictError(f"{self.entity} {entity_id} rating changed concurrently, try again.")


class PlayerRepo(RatingMixin, BaseRepo):
    collection_name = "players"
    entity = "Player"
    cache_prefix = "player"
    searchable = True

    async def find_by_name(self, first_name: str, last_name: str, exclude_id: Optional[str] = None) -> Optional[dict]:
        query = {"first_name": name_pattern(first_name), "last_name": name_pattern(last_name)}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self.find_one(query)

    async def find_by_slug(self, slug: str) -> Optional[dict]:
        return await self.find_one({"slug": slug})

    async def find_by_name_with_family(self, first_name: str, last_name: str) -> Optional[dict]:
        """Matches the player's own last name or the display last name of their family."""
        candidates = await self.find_all({"first_name": name_pattern(first_name)})
        wanted = last_name.strip().lower()
        for player in candidates:
            if player.get("last_name", "").lower() == wanted:
                return player
        for player in candidates:
            if not player.get("current_family"):
                continue
            family = await self.db.families.find_one({"id": player["current_family"]}, NO_ID)
            if family and family.get("display_last_name", "").lower() == wanted:
                return player
        return None

    async def set_family(self, player_id: str, family_id: str) -> Optional[dict]:
        return await self.modify(player_id, {"$set": {"current_family": family_id}})

    async def unset_family(self, player_id: str) -> Optional[dict]:
        return await self.modify(player_id, {"$set": {"current_family": None}})


class FamilyRepo(RatingMixin, BaseRepo):
    collection_name = "families"
    entity = "Family"
    cache_prefix = "family"
    searchable = True

    async def find_active_by_name(self, name: str, exclude_id: Optional[str] = None) -> Optional[dict]:
        query = {"name": name_pattern(name)}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self.find_one(query)

    async def find_owned_by(self, player_id: str) -> Optional[dict]:
        return await self.find_one({"owner": player_id})

    async def add_member(self, family_id: str, member: dict) -> Optional[dict]:
        return await self.modify(family_id, {"$push": {"members": member}})

    async def remove_member(self, family_id: str, player_id: str) -> Optional[dict]:
        return await self.modify(family_id, {"$pull": {"members": {"player": player_id}}})

    async def change_owner(self, family: dict, new_owner_id: str, owner_role: str) -> dict:
        members = []
        for member in family.get("members", []):
            member = dict(member)
            if member["player"] == new_owner_id:
                member["role"] = owner_role
            elif member["player"] == family["owner"]:
                member["role"] = None
            members.append(member)
        after = await self.collection.find_one_and_update(
            {"id": family["id"]},
            {"$set": {"owner": new_owner_id, "members": members, "updated_at": now_iso()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        await self._after_write(after, "owner_change", {"owner": {"from": family["owner"], "to": new_owner_id}})
        return after


class MapTemplateRepo(BaseRepo):
    collection_name = "map_templates"
    entity = "MapTemplate"
    cache_prefix = "map-template"
    searchable = True
    default_sort = [("name", 1)]

    async def find_active_by_name_or_slug(self, name: str, slug: str, exclude_id: Optional[str] = None) -> Optional[dict]:
        query = {"$or": [{"name": name_pattern(name)}, {"slug": slug}]}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self.find_one(query)

    async def increment_usage_count(self, template_id: str) -> Optional[dict]:
        return await self.modify(template_id, {"$inc": {"usage_count": 1}}, audit=False)


class TournamentTemplateRepo(BaseRepo):
    collection_name = "tournament_templates"
    entity = "TournamentTemplate"
    cache_prefix = "tournament-template"
    searchable = True
    default_sort = [("name", 1)]

    async def find_by_name(self, name: str, exclude_id: Optional[str] = None, include_archived: bool = True) -> Optional[dict]:
        query = {"name": name_pattern(name)}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self.find_one(query, include_archived=include_archived)

    async def increment_usage_count(self, template_id: str) -> Optional[dict]:
        doc = await self.collection.find_one_and_update(
            {"id": template_id, "archived_at": None},
            {"$inc": {"usage_count": 1}, "$set": {"updated_at": now_iso()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            await self.invalidate(doc)
        return doc


class TournamentRepo(BaseRepo):
    collection_name = "tournaments"
    entity = "Tournament"
    cache_prefix = "tournament"
    searchable = True
    default_sort = [("start_date", -1)]

    def cache_tags(self, doc: dict) -> list:
        return super().cache_tags(doc) + [CacheTags.tournament_slug(doc.get("slug", ""))]

    async def invalidate(self, doc: dict):
        await self.cache.invalidate(f"tournament:slug:{doc.get('slug', '')}")
        await super().invalidate(doc)

    async def find_by_slug(self, slug: str) -> Optional[dict]:
        async def load():
            return await self.collection.find_one({"slug": slug, "archived_at": None}, NO_ID)

        doc = await self.cache.get_or_set(f"tournament:slug:{slug}", load, tags=[CacheTags.tournament_slug(slug)])
        if doc and doc.get("archived_at"):
            return None
        return doc

    async def add_participant(self, tournament_id: str, participant: dict) -> Optional[dict]:
        return await self.modify(tournament_id, {"$push": {"participants": participant}})

    async def remove_participant(self, tournament_id: str, participant_id: str) -> Optional[dict]:
        return await self.modify(tournament_id, {"$pull": {"participants": {"id": participant_id}}})

    async def get_tournament_stats(self, tournament_id: str) -> list:
        async def load():
            rows = {}
            cursor = self.db.player_map_participations.find({"tournament_id": tournament_id}, NO_ID)
            async for p in cursor:
                row = rows.setdefault(p["player_id"], {
                    "player_id": p["player_id"], "kills": 0, "deaths": 0, "damage_dealt": 0, "maps_played": 0,
                })
                row["kills"] += p.get("kills", 0)
                row["deaths"] += p.get("deaths", 0)
                row["damage_dealt"] += p.get("damage_dealt", 0)
                row["maps_played"] += 1
            stats = []
            for row in rows.values():
                player = await self.db.players.find_one({"id": row["player_id"]}, NO_ID)
                if not player:
                    continue
                row["full_name"] = f"{player['first_name']} {player['last_name']}"
                row["slug"] = player.get("slug")
                row["kd"] = row["kills"] / max(1, row["deaths"])
                stats.append(row)
            stats.sort(key=lambda r: r["kills"], reverse=True)
            return stats

        return await self.cache.get_or_set(f"stats:tournament:{tournament_id}", load,
                                           tags=[CacheTags.entity("tournament", tournament_id)])


class MapRepo(BaseRepo):
    collection_name = "maps"
    entity = "Map"
    cache_prefix = "map"
    default_sort = [("start_date_time", 1)]

    async def count_in_tournament(self, tournament_id: str) -> int:
        return await self.collection.count_documents({"tournament": tournament_id})

    async def find_with_family(self, tournament_id: str, family_id: str) -> list:
        return await self.find_all({"tournament": tournament_id, "participants.participant": family_id},
                                   include_archived=True)


# ─── Record Repositories ───

class RecordRepo:
    """Append-only facts (participations, earnings, achievements, stats)."""

    collection_name: str = None

    def __init__(self, db):
        self.collection = db[self.collection_name]

    async def create(self, data: dict) -> dict:
        doc = {"id": new_id(), "created_at": now_iso(), **data}
        await self.collection.insert_one(doc)
        doc.pop("_id", None)
        return doc

    async def find_one(self, query: dict) -> Optional[dict]:
        return await self.collection.find_one(query, NO_ID)

    async def find_many(self, query: dict, sort=None) -> list:
        cursor = self.collection.find(query, NO_ID)
        if sort:
            cursor = cursor.sort(sort)
        return await cursor.to_list(None)

    async def delete_many(self, query: dict) -> int:
        result = await self.collection.delete_many(query)
        return result.deleted_count

    async def upsert(self, query: dict, update: dict) -> dict:
        update = dict(update)
        update["$setOnInsert"] = {**update.get("$setOnInsert", {}), "id": new_id(), "created_at": now_iso()}
        update["$set"] = {**update.get("$set", {}), "updated_at": now_iso()}
        return await self.collection.find_one_and_update(
            query, update, projection=NO_ID, upsert=True, return_document=ReturnDocument.AFTER,
        )


class PlayerMapParticipationRepo(RecordRepo):
    collection_name = "player_map_participations"


class FamilyMapParticipationRepo(RecordRepo):
    collection_name = "family_map_participations"


class PlayerTournamentParticipationRepo(RecordRepo):
    collection_name = "player_tournament_participations"

    async def update_by_player_and_tournament(self, player_id: str, tournament_id: str, update: dict) -> dict:
        return await self.upsert({"player_id": player_id, "tournament_id": tournament_id}, update)


class FamilyTournamentParticipationRepo(RecordRepo):
    collection_name = "family_tournament_participations"

    async def update_by_family_and_tournament(self, family_id: str, tournament_id: str, update: dict) -> dict:
        return await self.upsert({"family_id": family_id, "tournament_id": tournament_id}, update)


class PlayerEarningRepo(RecordRepo):
    collection_name = "player_earnings"


class FamilyEarningRepo(RecordRepo):
    collection_name = "family_earnings"


class PlayerAchievementRepo(RecordRepo):
    collection_name = "player_achievements"


class StatsRepo(RecordRepo):
    owner_field: str = None

    async def get(self, owner_id: str) -> Optional[dict]:
        return await self.find_one({self.owner_field: owner_id})

    async def ensure(self, owner_id: str, defaults: dict) -> dict:
        return await self.upsert({self.owner_field: owner_id}, {"$setOnInsert": defaults})

    async def apply(self, owner_id: str, update: dict) -> dict:
        return await self.upsert({self.owner_field: owner_id}, update)


class PlayerStatsRepo(StatsRepo):
    collection_name = "player_stats"
    owner_field = "player_id"


class FamilyStatsRepo(StatsRepo):
    collection_name = "family_stats"
    owner_field = "family_id"
