from ..constants import ACHIEVEMENT_MAP_MVP, ACHIEVEMENT_MAP_TOP_DAMAGE, ACHIEVEMENT_MAP_TOP_KILLS
from ..utils import now_iso


class AchievementService:
    def __init__(self, player_achievements, statistics):
        self.player_achievements = player_achievements
        self.statistics = statistics

    async def _award(self, achievement_type: str, player_id: str, map_doc: dict) -> dict:
        record = await self.player_achievements.create({
            "player_id": player_id,
            "map_id": map_doc["id"],
            "tournament_id": map_doc["tournament"],
            "type": achievement_type,
            "earned_at": now_iso(),
        })
        await self.statistics.record_achievement(player_id, achievement_type)
        return record

    async def award_map_achievements(self, map_doc: dict, rows: list, mvp_player_id=None) -> list:
        awarded = []
        if mvp_player_id:
            awarded.append(await self._award(ACHIEVEMENT_MAP_MVP, mvp_player_id, map_doc))
        if rows:
            top_kills = max(rows, key=lambda r: r["kills"])
            if top_kills["kills"] > 0:
                awarded.append(await self._award(ACHIEVEMENT_MAP_TOP_KILLS, top_kills["player_id"], map_doc))
            top_damage = max(rows, key=lambda r: r["damage_dealt"])
            if top_damage["damage_dealt"] > 0:
                awarded.append(await self._award(ACHIEVEMENT_MAP_TOP_DAMAGE, top_damage["player_id"], map_doc))
        return awarded

    async def revoke_map_achievements(self, map_id: str) -> int:
        records = await self.player_achievements.find_many({"map_id": map_id})
        for record in records:
            await self.statistics.record_achievement(record["player_id"], record["type"], sign=-1)
        return await self.player_achievements.delete_many({"map_id": map_id})
