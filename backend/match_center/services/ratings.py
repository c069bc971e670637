import logging

logger = logging.getLogger(__name__)


class RatingService:
    """Rating arithmetic: players gain their kills, families gain the requested change."""

    def __init__(self, players, families):
        self.players = players
        self.families = families

    async def _apply(self, repo, entity_id: str, change) -> dict:
        previous, new = await repo.increment_rating(entity_id, change)
        applied = new - previous
        if applied != change:
            logger.info(f"{repo.entity} {entity_id} rating change clamped from {change} to {applied}")
        return {"previous_rating": previous, "rating_change": applied, "new_rating": new}

    async def apply_player_change(self, player_id: str, kills) -> dict:
        return await self._apply(self.players, player_id, kills)

    async def apply_family_change(self, family_id: str, change) -> dict:
        return await self._apply(self.families, family_id, change)

    async def revert_player_change(self, player_id: str, rating_change) -> dict:
        return await self._apply(self.players, player_id, -rating_change)

    async def revert_family_change(self, family_id: str, rating_change) -> dict:
        return await self._apply(self.families, family_id, -rating_change)
