import re
import logging
from typing import Optional

from ..constants import COMPLETED, PLANNED
from ..errors import ConflictError, NotFoundError, ValidationError
from ..utils import new_id, now_iso, to_iso

logger = logging.getLogger(__name__)


def prize_applies(prize: dict, tier: str, rank: Optional[int]) -> bool:
    target = prize.get("target", {})
    if target.get("tier") and target["tier"] == tier:
        return True
    return bool(target.get("rank")) and target["rank"] == rank


class TournamentService:
    def __init__(self, tournaments, tournament_templates, families, maps, family_tournament_participations,
                 player_tournament_participations, family_earnings, player_earnings, statistics):
        self.tournaments = tournaments
        self.tournament_templates = tournament_templates
        self.families = families
        self.maps = maps
        self.family_tournament_participations = family_tournament_participations
        self.player_tournament_participations = player_tournament_participations
        self.family_earnings = family_earnings
        self.player_earnings = player_earnings
        self.statistics = statistics

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        template = await self.tournament_templates.increment_usage_count(data["template_id"])
        if not template:
            raise NotFoundError(f"Tournament template {data['template_id']} not found.")

        doc = {
            "name": data.get("name") or f"{template['name']} #{template['usage_count']}",
            "slug": f"{template['slug']}-{template['usage_count']}",
            "template": template["id"],
            "tournament_type": data.get("tournament_type", "family"),
            "status": PLANNED,
            "start_date": to_iso(data["start_date"]),
            "end_date": to_iso(data.get("end_date")),
            "description": data.get("description") or template.get("description"),
            "rules": data.get("rules") or template.get("rules"),
            "prize_pool": data.get("prize_pool") or template.get("prize_pool", []),
            "participants": [],
            "winner": None,
            "mvp": None,
        }
        tournament = await self.tournaments.create(doc, actor_id)
        logger.info(f"Tournament created: {tournament['slug']}")
        return tournament

    async def list(self, status: str = "active", page: int = 1, limit: int = 10, q: Optional[str] = None,
                   tournament_status: Optional[str] = None) -> dict:
        query = {}
        if q:
            query["name"] = {"$regex": re.escape(q.strip()), "$options": "i"}
        if tournament_status:
            query["status"] = tournament_status
        return await self.tournaments.find(query, None, page, limit, status)

    async def get(self, tournament_id: str, include_archived: bool = False) -> dict:
        tournament = await self.tournaments.find_by_id(tournament_id, include_archived=include_archived)
        if not tournament:
            raise NotFoundError(f"Tournament {tournament_id} not found.")
        return tournament

    async def get_by_slug(self, slug: str) -> dict:
        tournament = await self.tournaments.find_by_slug(slug)
        if not tournament:
            raise NotFoundError(f"Tournament '{slug}' not found.")
        return tournament

    async def update(self, tournament_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        tournament = await self.get(tournament_id)
        if tournament["status"] == COMPLETED and "status" in data:
            raise ConflictError("The status of a completed tournament cannot be changed.")
        for field in ("start_date", "end_date"):
            if field in data:
                data[field] = to_iso(data[field])
        start = data.get("start_date", tournament.get("start_date"))
        end = data.get("end_date", tournament.get("end_date"))
        if start and end and end < start:
            raise ValidationError("end_date must not be before start_date")
        if not data:
            return tournament
        return await self.tournaments.update(tournament_id, data, actor_id=actor_id)

    async def archive(self, tournament_id: str, actor_id: Optional[str] = None) -> dict:
        tournament = await self.get(tournament_id, include_archived=True)
        if tournament.get("archived_at"):
            raise ConflictError("Tournament is already archived.")
        return await self.tournaments.archive(tournament_id, actor_id)

    async def restore(self, tournament_id: str, actor_id: Optional[str] = None) -> dict:
        tournament = await self.get(tournament_id, include_archived=True)
        if not tournament.get("archived_at"):
            raise ConflictError("Tournament is not archived.")
        return await self.tournaments.restore(tournament_id, actor_id)

    async def add_participant(self, tournament_id: str, data: dict) -> dict:
        tournament = await self.get(tournament_id)
        if tournament["status"] == COMPLETED:
            raise ConflictError("Participants cannot be added to a completed tournament.")
        participant = {"id": new_id(), "participant_type": data.get("participant_type", "family")}
        if participant["participant_type"] == "family":
            family = await self.families.find_by_id(data["family_id"])
            if not family:
                raise NotFoundError("Family not found or archived.")
            if any(p.get("family") == family["id"] for p in tournament.get("participants", [])):
                raise ConflictError(f"Family '{family['name']}' is already registered.")
            participant["family"] = family["id"]
        else:
            if not data.get("team_name"):
                raise ValidationError("team_name is required for team participants.")
            participant["team_name"] = data["team_name"]
        return await self.tournaments.add_participant(tournament_id, participant)

    async def remove_participant(self, tournament_id: str, participant_id: str) -> dict:
        tournament = await self.get(tournament_id)
        participant = next((p for p in tournament.get("participants", []) if p["id"] == participant_id), None)
        if not participant:
            raise NotFoundError("Participant not found in this tournament.")
        if participant.get("family") and await self.maps.find_with_family(tournament_id, participant["family"]):
            raise ValidationError("The participant takes part in at least one map of this tournament.")
        return await self.tournaments.remove_participant(tournament_id, participant_id)

    async def get_stats(self, tournament_id: str) -> list:
        await self.get(tournament_id, include_archived=True)
        return await self.tournaments.get_tournament_stats(tournament_id)

    async def complete(self, tournament_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        outcomes = data.get("outcomes")
        if not outcomes and data.get("winner_id"):
            outcomes = [{"family_id": data["winner_id"], "tier": "winner", "rank": 1}]
        if not outcomes:
            raise ValidationError("At least one outcome is required.")

        tournament = await self.get(tournament_id)
        if tournament["status"] == COMPLETED:
            raise ValidationError("Tournament is already completed.")
        winner = next((o for o in outcomes if o.get("tier") == "winner" or o.get("rank") == 1), None)
        if not winner:
            raise ValidationError('No winner given (an outcome needs tier "winner" or rank 1).')

        registered = {p.get("family") for p in tournament.get("participants", []) if p.get("family")}
        families = {}
        for outcome in outcomes:
            if outcome["family_id"] not in registered:
                raise ValidationError(f"Family {outcome['family_id']} is not a participant of this tournament.")
            family = await self.families.find_by_id(outcome["family_id"], include_archived=True)
            if not family:
                raise NotFoundError(f"Family {outcome['family_id']} not found.")
            families[family["id"]] = family

        for outcome in outcomes:
            await self._distribute(tournament, families[outcome["family_id"]], outcome)

        template = await self.tournament_templates.find_by_id(tournament["template"], include_archived=True)
        if template:
            for member in families[winner["family_id"]].get("members", []):
                await self.statistics.add_tournament_win(member["player"], template)

        completed = await self.tournaments.update(
            tournament_id,
            {"status": COMPLETED, "winner": winner["family_id"], "end_date": now_iso()},
            action="complete", actor_id=actor_id,
        )
        logger.info(f"Tournament {tournament['slug']} completed, winner {winner['family_id']}")
        return completed

    async def _distribute(self, tournament: dict, family: dict, outcome: dict):
        tier, rank = outcome["tier"], outcome.get("rank")
        members = family.get("members", [])
        result = {"tier": tier, "rank": rank}
        family_earnings = []

        for prize in tournament.get("prize_pool", []):
            if not prize_applies(prize, tier, rank):
                continue
            earning = {"currency": prize["currency"], "amount": prize["amount"]}
            await self.family_earnings.create({
                "family_id": family["id"], "tournament_id": tournament["id"], "tier": tier, "rank": rank, **earning,
            })
            await self.statistics.add_family_earning(family["id"], prize["currency"], prize["amount"])
            family_earnings.append(earning)

            if not members:
                continue
            share = prize["amount"] / len(members)
            for member in members:
                await self.player_earnings.create({
                    "player_id": member["player"], "family_id": family["id"], "tournament_id": tournament["id"],
                    "currency": prize["currency"], "amount": share,
                })
                await self.statistics.add_player_earning(member["player"], prize["currency"], share)
                await self.player_tournament_participations.update_by_player_and_tournament(
                    member["player"], tournament["id"],
                    {"$push": {"earnings": {"currency": prize["currency"], "amount": share}},
                     "$set": {"family_id": family["id"], "result": result}},
                )

        for member in members:
            await self.player_tournament_participations.update_by_player_and_tournament(
                member["player"], tournament["id"], {"$set": {"family_id": family["id"], "result": result}},
            )
        await self.family_tournament_participations.update_by_family_and_tournament(
            family["id"], tournament["id"],
            {"$set": {"result": result}, "$push": {"earnings": {"$each": family_earnings}}},
        )
        await self.statistics.record_family_tournament(family["id"], won=tier == "winner" or rank == 1)
