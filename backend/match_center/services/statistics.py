"""Accumulated player and family statistics.

Player stats keep an all-time ``overall`` bucket plus rolling ``monthly``
(``YYYY-MM``) and ``yearly`` (``YYYY``) buckets. When a result lands in a
new period the bucket is reset; a replaced yearly bucket is pushed onto
``yearly_archive``. Every change is a single ``$inc`` on the stats document.
"""
import re
import logging
from datetime import datetime, timezone
from typing import Optional

from ..constants import ACHIEVEMENT_MAP_MVP, ACHIEVEMENT_MAP_TOP_DAMAGE, ACHIEVEMENT_MAP_TOP_KILLS
from ..utils import parse_datetime

logger = logging.getLogger(__name__)

WEAPON_FIELDS = ("shots_fired", "hits", "kills", "damage", "headshots")

ACHIEVEMENT_COUNTERS = {
    ACHIEVEMENT_MAP_MVP: "map_mvps",
    ACHIEVEMENT_MAP_TOP_KILLS: "map_top_kills",
    ACHIEVEMENT_MAP_TOP_DAMAGE: "map_top_damage",
}


def month_period(at: datetime) -> str:
    return at.strftime("%Y-%m")


def year_period(at: datetime) -> str:
    return at.strftime("%Y")


def weapon_key(name: str) -> str:
    # Dots and dollars are not allowed in document keys
    return re.sub(r"[.$]", "_", name.strip())


def empty_bucket(period: Optional[str] = None) -> dict:
    bucket = {"kills": 0, "deaths": 0, "damage_dealt": 0, "maps_played": 0, "wins": 0, "weapon_stats": {}}
    if period is not None:
        bucket["period"] = period
    return bucket


def empty_player_stats(at: Optional[datetime] = None) -> dict:
    at = at or datetime.now(timezone.utc)
    return {
        "overall": {
            **empty_bucket(),
            "map_mvps": 0, "map_top_kills": 0, "map_top_damage": 0,
            "tournaments_won": {}, "total_earnings": {},
        },
        "monthly": empty_bucket(month_period(at)),
        "yearly": empty_bucket(year_period(at)),
        "yearly_archive": [],
    }


def empty_family_stats() -> dict:
    return {
        "overall": {
            "maps_played": 0, "wins": 0, "tournaments_played": 0, "tournaments_won": 0, "total_earnings": {},
        },
    }


class StatisticsService:
    def __init__(self, player_stats, family_stats):
        self.player_stats = player_stats
        self.family_stats = family_stats

    async def _roll_periods(self, player_id: str, at: datetime) -> dict:
        stats = await self.player_stats.ensure(player_id, empty_player_stats(at))
        month, year = month_period(at), year_period(at)
        update = {}
        if stats.get("monthly", {}).get("period") != month:
            update.setdefault("$set", {})["monthly"] = empty_bucket(month)
        yearly = stats.get("yearly", {})
        if yearly.get("period") != year:
            update.setdefault("$set", {})["yearly"] = empty_bucket(year)
            if yearly.get("period"):
                update["$push"] = {"yearly_archive": yearly}
        if update:
            logger.info(f"Rolling stats periods for player {player_id} to {month}")
            stats = await self.player_stats.apply(player_id, update)
        return stats

    async def record_player_map(self, participation: dict, won: bool, sign: int = 1):
        """Adds (``sign=1``) or subtracts (``sign=-1``) one map participation."""
        player_id = participation["player_id"]
        at = parse_datetime(participation["earned_at"])
        if sign > 0:
            stats = await self._roll_periods(player_id, at)
        else:
            stats = await self.player_stats.get(player_id) or {}

        scopes = ["overall"]
        if stats.get("monthly", {}).get("period") == month_period(at):
            scopes.append("monthly")
        if stats.get("yearly", {}).get("period") == year_period(at):
            scopes.append("yearly")

        inc = {}
        for scope in scopes:
            inc[f"{scope}.kills"] = sign * participation.get("kills", 0)
            inc[f"{scope}.deaths"] = sign * participation.get("deaths", 0)
            inc[f"{scope}.damage_dealt"] = sign * participation.get("damage_dealt", 0)
            inc[f"{scope}.maps_played"] = sign
            inc[f"{scope}.wins"] = sign * int(won)
            for weapon in participation.get("weapon_stats", []):
                key = weapon_key(weapon["weapon"])
                for field in WEAPON_FIELDS:
                    path = f"{scope}.weapon_stats.{key}.{field}"
                    inc[path] = inc.get(path, 0) + sign * weapon.get(field, 0)
        await self.player_stats.ensure(player_id, empty_player_stats(at))
        await self.player_stats.apply(player_id, {"$inc": inc})

    async def record_family_map(self, family_id: str, won: bool, sign: int = 1):
        await self.family_stats.ensure(family_id, empty_family_stats())
        await self.family_stats.apply(family_id, {"$inc": {
            "overall.maps_played": sign,
            "overall.wins": sign * int(won),
        }})

    async def record_achievement(self, player_id: str, achievement_type: str, sign: int = 1):
        await self.player_stats.ensure(player_id, empty_player_stats())
        await self.player_stats.apply(player_id, {"$inc": {f"overall.{ACHIEVEMENT_COUNTERS[achievement_type]}": sign}})

    async def add_player_earning(self, player_id: str, currency: str, amount: float):
        await self.player_stats.ensure(player_id, empty_player_stats())
        await self.player_stats.apply(player_id, {"$inc": {f"overall.total_earnings.{currency}": amount}})

    async def add_family_earning(self, family_id: str, currency: str, amount: float):
        await self.family_stats.ensure(family_id, empty_family_stats())
        await self.family_stats.apply(family_id, {"$inc": {f"overall.total_earnings.{currency}": amount}})

    async def record_family_tournament(self, family_id: str, won: bool):
        await self.family_stats.ensure(family_id, empty_family_stats())
        await self.family_stats.apply(family_id, {"$inc": {
            "overall.tournaments_played": 1,
            "overall.tournaments_won": int(won),
        }})

    async def add_tournament_win(self, player_id: str, template: dict):
        await self.player_stats.ensure(player_id, empty_player_stats())
        await self.player_stats.apply(player_id, {
            "$inc": {f"overall.tournaments_won.{template['id']}.count": 1},
            "$set": {f"overall.tournaments_won.{template['id']}.template_name": template["name"]},
        })
