import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from . import config

logger = logging.getLogger(__name__)

ACTIVE_ONLY = {"archived_at": None}


def create_client() -> AsyncIOMotorClient:
    return AsyncIOMotorClient(config.MONGO_URL)


def get_database(client: AsyncIOMotorClient):
    return client[config.DB_NAME]


async def ensure_indexes(db):
    """Creates the uniqueness and lookup indexes the services rely on."""
    await db.admin_users.create_index("email", unique=True)

    await db.players.create_index("slug", unique=True)
    await db.players.create_index([("first_name", ASCENDING), ("last_name", ASCENDING)])
    await db.players.create_index("current_family")
    await db.players.create_index([("rating", DESCENDING)])

    # Names only need to be unique among active documents
    await db.families.create_index("name", unique=True, partialFilterExpression=ACTIVE_ONLY,
                                   collation={"locale": "en", "strength": 2}, name="family_active_name")
    await db.families.create_index("slug", unique=True, partialFilterExpression=ACTIVE_ONLY, name="family_active_slug")
    await db.families.create_index("members.player")

    await db.map_templates.create_index("name", unique=True, partialFilterExpression=ACTIVE_ONLY,
                                        collation={"locale": "en", "strength": 2}, name="map_template_active_name")
    await db.map_templates.create_index("slug", unique=True, partialFilterExpression=ACTIVE_ONLY,
                                        name="map_template_active_slug")

    await db.tournament_templates.create_index("slug", unique=True)
    await db.tournaments.create_index("slug", unique=True)
    await db.tournaments.create_index([("start_date", DESCENDING)])
    await db.tournaments.create_index("participants.family")

    await db.maps.create_index("slug", unique=True)
    await db.maps.create_index([("tournament", ASCENDING), ("start_date_time", ASCENDING)])

    await db.player_map_participations.create_index([("player_id", ASCENDING), ("map_id", ASCENDING)], unique=True)
    await db.player_map_participations.create_index("tournament_id")
    await db.family_map_participations.create_index([("family_id", ASCENDING), ("map_id", ASCENDING)], unique=True)
    await db.player_tournament_participations.create_index(
        [("player_id", ASCENDING), ("tournament_id", ASCENDING)], unique=True)
    await db.family_tournament_participations.create_index(
        [("family_id", ASCENDING), ("tournament_id", ASCENDING)], unique=True)
    await db.player_earnings.create_index([("player_id", ASCENDING), ("tournament_id", ASCENDING)])
    await db.family_earnings.create_index([("family_id", ASCENDING), ("tournament_id", ASCENDING)])
    await db.player_achievements.create_index([("player_id", ASCENDING), ("map_id", ASCENDING)])
    await db.player_stats.create_index("player_id", unique=True)
    await db.family_stats.create_index("family_id", unique=True)

    await db.audit_logs.create_index([("entity", ASCENDING), ("entity_id", ASCENDING), ("timestamp", DESCENDING)])
    logger.info("MongoDB indexes ensured")
