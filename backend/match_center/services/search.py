"""Meilisearch index configuration, querying and document synchronisation."""
import logging
from typing import Iterable, Optional

import meilisearch
from meilisearch.errors import MeilisearchError
from starlette.concurrency import run_in_threadpool

from .. import config
from ..errors import AppError

logger = logging.getLogger(__name__)


def _base_entry(doc: dict) -> dict:
    return {
        "id": doc["id"],
        "slug": doc.get("slug"),
        "is_archived": bool(doc.get("archived_at")),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }


def build_player_entry(doc: dict) -> dict:
    return {
        **_base_entry(doc),
        "first_name": doc.get("first_name"),
        "last_name": doc.get("last_name"),
        "full_name": f"{doc.get('first_name', '')} {doc.get('last_name', '')}".strip(),
        "avatar": doc.get("avatar"),
        "rating": doc.get("rating", 0),
        "current_family": doc.get("current_family"),
    }


def build_family_entry(doc: dict) -> dict:
    return {
        **_base_entry(doc),
        "name": doc.get("name"),
        "display_last_name": doc.get("display_last_name"),
        "logo": doc.get("logo"),
        "rating": doc.get("rating", 0),
        "members_count": len(doc.get("members", [])),
    }


def build_tournament_entry(doc: dict) -> dict:
    return {
        **_base_entry(doc),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "status": doc.get("status"),
        "tournament_type": doc.get("tournament_type"),
        "start_date": doc.get("start_date"),
    }


def build_map_template_entry(doc: dict) -> dict:
    return {
        **_base_entry(doc),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "map_image": doc.get("map_image"),
    }


def build_tournament_template_entry(doc: dict) -> dict:
    return {
        **_base_entry(doc),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "default_image": doc.get("default_image"),
    }


# Keyed by the entity name carried in sync jobs
SEARCH_CONFIG = {
    "MapTemplate": {
        "key": "map_templates", "index": "map_templates", "collection": "map_templates",
        "searchable": ["name", "description"], "build_entry": build_map_template_entry,
    },
    "TournamentTemplate": {
        "key": "tournament_templates", "index": "tournament_templates", "collection": "tournament_templates",
        "searchable": ["name", "description"], "build_entry": build_tournament_template_entry,
    },
    "Player": {
        "key": "players", "index": "players", "collection": "players",
        "searchable": ["full_name", "first_name", "last_name", "slug"], "build_entry": build_player_entry,
    },
    "Family": {
        "key": "families", "index": "families", "collection": "families",
        "searchable": ["name", "display_last_name", "slug"], "build_entry": build_family_entry,
    },
    "Tournament": {
        "key": "tournaments", "index": "tournaments", "collection": "tournaments",
        "searchable": ["name", "description", "slug"], "build_entry": build_tournament_entry,
    },
}
CONFIG_BY_KEY = {entry["key"]: entry for entry in SEARCH_CONFIG.values()}

STATUS_FILTERS = {"active": "is_archived = false", "archived": "is_archived = true", "all": None}


def index_settings(entry: dict) -> dict:
    return {
        "searchableAttributes": entry["searchable"],
        "filterableAttributes": ["is_archived"],
        "sortableAttributes": ["created_at", "updated_at"],
    }


def create_search_client() -> Optional[meilisearch.Client]:
    if not config.MEILISEARCH_HOST:
        return None
    return meilisearch.Client(config.MEILISEARCH_HOST, config.MEILISEARCH_MASTER_KEY or None)


class SearchService:
    def __init__(self, db, client, search_queue):
        self.db = db
        self.client = client
        self.search_queue = search_queue

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _require_client(self):
        if not self.enabled:
            raise AppError("Search is not configured.", 503)

    async def init(self):
        if not self.enabled:
            return
        for entry in SEARCH_CONFIG.values():
            try:
                await run_in_threadpool(self.client.create_index, entry["index"], {"primaryKey": "id"})
                await run_in_threadpool(self.client.index(entry["index"]).update_settings, index_settings(entry))
                logger.info(f"Search index ready: {entry['index']}")
            except MeilisearchError as e:
                logger.error(f"Failed to initialise search index {entry['index']}: {e}")

    async def search(self, q: str, entities: Iterable[str], status: str = "active", limit: int = 10,
                     offset: int = 0) -> dict:
        self._require_client()
        keys = [key for key in entities if key in CONFIG_BY_KEY]
        skipped = [key for key in entities if key not in CONFIG_BY_KEY]
        if skipped:
            logger.warning(f"Skipping unknown search entities: {skipped}")
        results = {}
        if keys:
            queries = []
            for key in keys:
                query = {"indexUid": CONFIG_BY_KEY[key]["index"], "q": q, "limit": limit, "offset": offset}
                if STATUS_FILTERS.get(status):
                    query["filter"] = STATUS_FILTERS[status]
                queries.append(query)
            response = await run_in_threadpool(self.client.multi_search, queries)
            for key, result in zip(keys, response["results"]):
                results[key] = result.get("hits", [])
        return {"query": q, "entities": keys, "results": results}

    async def sync_document(self, action: str, entity: str, entity_id: str):
        entry = SEARCH_CONFIG.get(entity)
        if not entry:
            logger.warning(f"No search index configured for entity {entity}")
            return
        index = self.client.index(entry["index"])
        if action == "delete":
            await run_in_threadpool(index.delete_document, entity_id)
            return
        doc = await self.db[entry["collection"]].find_one({"id": entity_id}, {"_id": 0})
        if doc is None:
            await run_in_threadpool(index.delete_document, entity_id)
            return
        await run_in_threadpool(index.add_documents, [entry["build_entry"](doc)], "id")

    async def reindex_all(self) -> dict:
        total = 0
        for entity, entry in SEARCH_CONFIG.items():
            async for doc in self.db[entry["collection"]].find({}, {"_id": 0, "id": 1}):
                if await self.search_queue.enqueue("update", entity, doc["id"]):
                    total += 1
        logger.info(f"Reindex requested: {total} jobs enqueued")
        return {"total_jobs": total}
