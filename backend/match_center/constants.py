"""Shared enumerations for the match center domain."""

CURRENCY_TYPES = {
    "MAJESTIC_COINS": "MajesticCoins",
    "GTA_DOLLARS": "GTADollars",
    "REAL_VALUE": "RealValue",
}
CURRENCY_VALUES = list(CURRENCY_TYPES.values())

# Finishing-position buckets used by prize rules
RESULT_TIERS = ["winner", "runner_up", "third_place", "top_4", "top_8", "participant"]

PLANNED = "planned"
ACTIVE = "active"
COMPLETED = "completed"

TOURNAMENT_TYPES = ["family", "team"]

FAMILY_ROLE_OWNER = "owner"
FAMILY_ROLE_MEMBER = "member"

RATING_REASON_MAP_COMPLETION = "map_completion"

ACHIEVEMENT_MAP_MVP = "map_mvp"
ACHIEVEMENT_MAP_TOP_KILLS = "map_top_kills"
ACHIEVEMENT_MAP_TOP_DAMAGE = "map_top_damage"

DEFAULT_PLAYER_AVATAR = "/defaults/player-avatar.png"

# ─── Roles & permissions ───

ROLE_MATRIX = {
    "super": {"viewArchived", "unarchive", "viewAudit", "manageEntities", "manageNews"},
    "admin": {"manageEntities", "manageNews"},
    "moderator": {"manageNews"},
}


def can(role, permission):
    if not role:
        return False
    return permission in ROLE_MATRIX.get(role, set())
