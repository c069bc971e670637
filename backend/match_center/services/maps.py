import logging
from datetime import datetime, timezone
from typing import Optional

from ..constants import ACTIVE, COMPLETED, PLANNED, RATING_REASON_MAP_COMPLETION
from ..errors import ConflictError, NotFoundError, ValidationError
from ..utils import now_iso, parse_datetime, to_iso

logger = logging.getLogger(__name__)


def status_for_start(start) -> str:
    return PLANNED if parse_datetime(start) > datetime.now(timezone.utc) else ACTIVE


class MapService:
    def __init__(self, maps, tournaments, map_templates, players, families, player_map_participations,
                 family_map_participations, ratings, statistics, achievements):
        self.maps = maps
        self.tournaments = tournaments
        self.map_templates = map_templates
        self.players = players
        self.families = families
        self.player_map_participations = player_map_participations
        self.family_map_participations = family_map_participations
        self.ratings = ratings
        self.statistics = statistics
        self.achievements = achievements

    @staticmethod
    def _validate_participants(tournament: dict, participants: list):
        registered = {p.get("family") for p in tournament.get("participants", [])}
        for participant in participants:
            if participant["participant"] not in registered:
                raise ValidationError(f"Family {participant['participant']} is not a participant of the tournament.")

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        tournament = await self.tournaments.find_by_id(data["tournament_id"])
        if not tournament:
            raise NotFoundError(f"Tournament {data['tournament_id']} not found.")
        if tournament["status"] == COMPLETED:
            raise ConflictError("Maps cannot be added to a completed tournament.")
        template = await self.map_templates.find_by_id(data["template_id"])
        if not template:
            raise NotFoundError(f"Map template {data['template_id']} not found or archived.")
        participants = data.get("participants") or []
        self._validate_participants(tournament, participants)

        order = await self.maps.count_in_tournament(tournament["id"]) + 1
        start = to_iso(data["start_date_time"])
        doc = {
            "name": data.get("name") or template["name"],
            "slug": await self.maps.unique_slug(f"{tournament['slug']}-{template['slug']}-{order}"),
            "tournament": tournament["id"],
            "template": template["id"],
            "status": status_for_start(start),
            "start_date_time": start,
            "participants": participants,
            "winner": None,
            "mvp": None,
            "completed_at": None,
        }
        created = await self.maps.create(doc, actor_id)
        await self.map_templates.increment_usage_count(template["id"])
        return created

    async def list(self, status: str = "active", page: int = 1, limit: int = 10,
                   tournament_id: Optional[str] = None, map_status: Optional[str] = None) -> dict:
        query = {}
        if tournament_id:
            query["tournament"] = tournament_id
        if map_status:
            query["status"] = map_status
        return await self.maps.find(query, None, page, limit, status)

    async def get(self, map_id: str, include_archived: bool = False) -> dict:
        map_doc = await self.maps.find_by_id(map_id, include_archived=include_archived)
        if not map_doc:
            raise NotFoundError(f"Map {map_id} not found.")
        return map_doc

    async def update(self, map_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        map_doc = await self.get(map_id)
        if map_doc["status"] == COMPLETED:
            raise ConflictError("A completed map cannot be edited; roll it back first.")
        if data.get("participants") is not None:
            tournament = await self.tournaments.find_by_id(map_doc["tournament"], include_archived=True)
            self._validate_participants(tournament or {}, data["participants"])
        if data.get("start_date_time"):
            data["start_date_time"] = to_iso(data["start_date_time"])
            data["status"] = status_for_start(data["start_date_time"])
        if not data:
            return map_doc
        return await self.maps.update(map_id, data, actor_id=actor_id)

    async def archive(self, map_id: str, actor_id: Optional[str] = None) -> dict:
        map_doc = await self.get(map_id, include_archived=True)
        if map_doc.get("archived_at"):
            raise ConflictError("Map is already archived.")
        if map_doc["status"] == ACTIVE:
            raise ConflictError("An active map cannot be archived.")
        return await self.maps.archive(map_id, actor_id)

    async def restore(self, map_id: str, actor_id: Optional[str] = None) -> dict:
        map_doc = await self.get(map_id, include_archived=True)
        if not map_doc.get("archived_at"):
            raise ConflictError("Map is not archived.")
        return await self.maps.restore(map_id, actor_id)

    async def _resolve_rows(self, rows: list) -> list:
        resolved, unresolved, seen = [], [], set()
        for row in rows:
            if row.get("player_id"):
                player = await self.players.find_by_id(row["player_id"])
            else:
                player = await self.players.find_by_name_with_family(row["first_name"], row["last_name"])
            if not player:
                unresolved.append(row.get("player_id") or f"{row.get('first_name')} {row.get('last_name')}")
                continue
            if player["id"] in seen:
                raise ValidationError(f"Duplicate statistics row for player {player['slug']}.")
            seen.add(player["id"])
            resolved.append({**row, "player_id": player["id"],
                             "family_id": row.get("family_id") or player.get("current_family")})
        if unresolved:
            raise ValidationError("Some players could not be resolved.", errors=unresolved)
        return resolved

    async def complete(self, map_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        map_doc = await self.get(map_id)
        if map_doc["status"] == COMPLETED:
            raise ConflictError("Map is already completed.")
        tournament = await self.tournaments.find_by_id(map_doc["tournament"], include_archived=True)
        if not tournament:
            raise NotFoundError(f"Tournament {map_doc['tournament']} not found.")
        winner_id = data["winner_family_id"]
        if winner_id not in {p.get("family") for p in tournament.get("participants", [])}:
            raise ValidationError("The winner must be a participant of the tournament.")

        rows = await self._resolve_rows(data.get("player_stats", []))
        mvp_id = data.get("mvp_player_id")
        if mvp_id:
            if not await self.players.find_by_id(mvp_id, include_archived=True):
                raise NotFoundError(f"Player {mvp_id} not found.")
            if rows and mvp_id not in {row["player_id"] for row in rows}:
                raise ValidationError("The MVP must have a statistics row for this map.")
        changes = {c["family_id"]: c["change"] for c in data.get("rating_changes", [])}
        family_ids = list(changes)
        for family_id in [winner_id] + [p["participant"] for p in map_doc.get("participants", [])]:
            if family_id not in changes:
                family_ids.append(family_id)
                changes[family_id] = 0
        for family_id in family_ids:
            if not await self.families.find_by_id(family_id, include_archived=True):
                raise NotFoundError(f"Family {family_id} not found.")

        earned_at = now_iso()
        for family_id in family_ids:
            won = family_id == winner_id
            rating = await self.ratings.apply_family_change(family_id, changes[family_id])
            await self.family_map_participations.create({
                "family_id": family_id, "map_id": map_id, "tournament_id": tournament["id"],
                "result": "win" if won else "loss", "won": won,
                "reason": RATING_REASON_MAP_COMPLETION, "earned_at": earned_at, **rating,
            })
            await self.statistics.record_family_map(family_id, won)

        for row in rows:
            won = row["family_id"] == winner_id
            rating = await self.ratings.apply_player_change(row["player_id"], row.get("kills", 0))
            participation = await self.player_map_participations.create({
                "player_id": row["player_id"], "map_id": map_id, "tournament_id": tournament["id"],
                "family_id": row["family_id"], "won": won,
                "kills": row.get("kills", 0), "deaths": row.get("deaths", 0),
                "damage_dealt": row.get("damage_dealt", 0), "shots_fired": row.get("shots_fired", 0),
                "hits": row.get("hits", 0), "headshots": row.get("headshots", 0),
                "weapon_stats": row.get("weapon_stats", []),
                "reason": RATING_REASON_MAP_COMPLETION, "earned_at": earned_at, **rating,
            })
            await self.statistics.record_player_map(participation, won)

        await self.achievements.award_map_achievements(map_doc, rows, mvp_id)

        completed = await self.maps.update(map_id, {
            "status": COMPLETED, "winner": winner_id, "mvp": mvp_id, "completed_at": earned_at,
        }, action="complete", actor_id=actor_id)
        await self.tournaments.invalidate(tournament)
        logger.info(f"Map {map_doc['slug']} completed: winner {winner_id}, {len(rows)} player rows")
        return completed

    async def rollback(self, map_id: str, actor_id: Optional[str] = None) -> dict:
        map_doc = await self.get(map_id)
        if map_doc["status"] != COMPLETED:
            raise ConflictError("Only a completed map can be rolled back.")

        for participation in await self.player_map_participations.find_many({"map_id": map_id}):
            await self.ratings.revert_player_change(participation["player_id"], participation["rating_change"])
            await self.statistics.record_player_map(participation, participation.get("won", False), sign=-1)
        for participation in await self.family_map_participations.find_many({"map_id": map_id}):
            await self.ratings.revert_family_change(participation["family_id"], participation["rating_change"])
            await self.statistics.record_family_map(participation["family_id"], participation.get("won", False), sign=-1)

        await self.player_map_participations.delete_many({"map_id": map_id})
        await self.family_map_participations.delete_many({"map_id": map_id})
        await self.achievements.revoke_map_achievements(map_id)

        rolled_back = await self.maps.update(map_id, {
            "status": ACTIVE, "winner": None, "mvp": None, "completed_at": None,
        }, action="rollback", actor_id=actor_id)
        tournament = await self.tournaments.find_by_id(map_doc["tournament"], include_archived=True)
        if tournament:
            await self.tournaments.invalidate(tournament)
        logger.info(f"Map {map_doc['slug']} rolled back")
        return rolled_back
