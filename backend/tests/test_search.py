"""Search service, sync queue, worker and the admin search routes."""
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import fakeredis.aioredis
import pytest
from meilisearch.errors import MeilisearchError
from redis.exceptions import RedisError

from match_center import config
from match_center.search_queue import SearchQueue
from match_center.search_worker import process_job, run_worker
from match_center.services.search import SEARCH_CONFIG, SearchService, build_player_entry

from conftest import RecordingQueue


@pytest.fixture
def meili():
    client = MagicMock()
    client.multi_search.return_value = {"results": [
        {"indexUid": "players", "hits": [{"id": "p1", "full_name": "Vito Corleone"}]},
        {"indexUid": "families", "hits": []},
    ]}
    return client


@pytest.fixture
def search(db, meili):
    return SearchService(db, meili, RecordingQueue())


class TestSearchService:
    @pytest.mark.anyio
    async def test_multi_search_with_status_filter(self, search, meili):
        """Multi search with status filter"""
        result = await search.search("vito", ["players", "families", "news"], "active", limit=5, offset=0)
        queries = meili.multi_search.call_args.args[0]
        assert queries == [
            {"indexUid": "players", "q": "vito", "limit": 5, "offset": 0, "filter": "is_archived = false"},
            {"indexUid": "families", "q": "vito", "limit": 5, "offset": 0, "filter": "is_archived = false"},
        ]
        assert result == {
            "query": "vito",
            "entities": ["players", "families"],
            "results": {"players": [{"id": "p1", "full_name": "Vito Corleone"}], "families": []},
        }

    @pytest.mark.anyio
    async def test_status_all_has_no_filter(self, search, meili):
        """Status all has no filter"""
        await search.search("vito", ["players", "families"], "all")
        assert all("filter" not in q for q in meili.multi_search.call_args.args[0])

    @pytest.mark.anyio
    async def test_archived_status_filter(self, search, meili):
        """Archived status filter"""
        await search.search("vito", ["players", "families"], "archived")
        assert meili.multi_search.call_args.args[0][0]["filter"] == "is_archived = true"

    @pytest.mark.anyio
    async def test_only_unknown_entities(self, search, meili):
        """Only unknown entities"""
        result = await search.search("vito", ["news"])
        assert result["results"] == {}
        meili.multi_search.assert_not_called()

    @pytest.mark.anyio
    async def test_sync_update_builds_entry(self, search, meili, db):
        """Sync update builds entry"""
        await db.players.insert_one({"id": "p1", "first_name": "Vito", "last_name": "Corleone", "slug": "vito-corleone",
                                     "rating": 12, "archived_at": "2024-01-01T00:00:00+00:00"})
        await search.sync_document("update", "Player", "p1")
        meili.index.assert_called_with("players")
        documents = meili.index.return_value.add_documents.call_args.args[0]
        assert documents[0]["full_name"] == "Vito Corleone"
        assert documents[0]["is_archived"] is True
        assert documents[0]["rating"] == 12

    @pytest.mark.anyio
    async def test_sync_missing_document_deletes(self, search, meili):
        """Sync missing document deletes"""
        await search.sync_document("update", "Family", "gone")
        meili.index.return_value.delete_document.assert_called_once_with("gone")

    @pytest.mark.anyio
    async def test_sync_delete(self, search, meili):
        """Sync delete"""
        await search.sync_document("delete", "Tournament", "t1")
        meili.index.assert_called_with("tournaments")
        meili.index.return_value.delete_document.assert_called_once_with("t1")

    @pytest.mark.anyio
    async def test_sync_unknown_entity_is_ignored(self, search, meili):
        """Sync unknown entity is ignored"""
        await search.sync_document("update", "Map", "m1")
        meili.index.assert_not_called()

    @pytest.mark.anyio
    async def test_init_logs_failures(self, search, meili):
        """Init logs failures"""
        meili.create_index.side_effect = MeilisearchError("unreachable")
        await search.init()
        assert meili.create_index.call_count == len(SEARCH_CONFIG)

    @pytest.mark.anyio
    async def test_init_applies_settings(self, search, meili):
        """Init applies settings"""
        await search.init()
        settings = meili.index.return_value.update_settings.call_args.args[0]
        assert settings["filterableAttributes"] == ["is_archived"]
        assert settings["sortableAttributes"] == ["created_at", "updated_at"]

    def test_entry_builder(self):
        """Entry builder"""
        entry = build_player_entry({"id": "p1", "first_name": "Vito", "last_name": "Corleone", "archived_at": None})
        assert entry["is_archived"] is False
        assert entry["full_name"] == "Vito Corleone"


class TestSearchRoutes:
    def test_requires_query_and_entities(self, client, super_headers):
        """Requires query and entities"""
        assert client.get("/api/admin/search?q=&entities=players", headers=super_headers).status_code == 400
        assert client.get("/api/admin/search?q=vito", headers=super_headers).status_code == 400

    def test_search(self, client, container, meili, super_headers):
        """Search"""
        container.search.client = meili
        response = client.get("/api/admin/search?q=vito&entities=players,families", headers=super_headers)
        assert response.status_code == 200
        assert response.json()["results"]["players"][0]["id"] == "p1"

    def test_disabled_search(self, client, container, super_headers):
        """Disabled search"""
        container.search.client = None
        response = client.get("/api/admin/search?q=vito&entities=players", headers=super_headers)
        assert response.status_code == 503

    def test_reindex_enqueues_every_document(self, api, client, container, super_headers):
        """Reindex enqueues every document"""
        api.player("Vito", "Corleone")
        api.map_template("Docks Warehouse")
        container.search_queue.jobs.clear()

        response = client.post("/api/admin/search/reindex", headers=super_headers)
        assert response.status_code == 202
        assert response.json()["data"] == {"total_jobs": 2}
        assert sorted(job["entity"] for job in container.search_queue.jobs) == ["MapTemplate", "Player"]

    def test_mutations_enqueue_sync_jobs(self, api, client, container, super_headers):
        """Mutations enqueue sync jobs"""
        player = api.player("Vito", "Corleone")
        client.patch(f"/api/admin/players/{player['id']}/archive", headers=super_headers)
        jobs = [j for j in container.search_queue.jobs if j["entity_id"] == player["id"]]
        assert len(jobs) == 2
        assert all(j["action"] == "update" for j in jobs)


class TestSearchQueue:
    @pytest.mark.anyio
    async def test_round_trip_through_redis(self):
        """Round trip through redis"""
        queue = SearchQueue(fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True),
                            name="search-sync-test")
        assert await queue.enqueue("update", "Player", "p1")
        assert await queue.enqueue("delete", "Family", "f1")
        assert await queue.size() == 2
        assert await queue.pop(timeout=1) == {"action": "update", "entity": "Player", "entity_id": "p1", "attempts": 0}
        assert await queue.clear() == 1
        assert await queue.size() == 0

    @pytest.mark.anyio
    async def test_disabled_queue_is_a_no_op(self):
        """Disabled queue is a no op"""
        queue = SearchQueue(None)
        assert not await queue.enqueue("update", "Player", "p1")
        assert await queue.size() == 0

    @pytest.mark.anyio
    async def test_size_survives_redis_errors(self):
        """The dashboard still gets a size when Redis is down"""
        client = MagicMock()
        client.llen = AsyncMock(side_effect=RedisError("connection refused"))
        assert await SearchQueue(client).size() == 0


class TestSearchWorker:
    @pytest.mark.anyio
    async def test_failed_job_is_requeued(self):
        """Failed job is requeued"""
        search = MagicMock()
        search.sync_document = AsyncMock(side_effect=MeilisearchError("down"))
        queue = RecordingQueue()
        job = {"action": "update", "entity": "Player", "entity_id": "p1", "attempts": 0}
        assert not await process_job(search, queue, job)
        assert queue.jobs == [{**job, "attempts": 1}]

    @pytest.mark.anyio
    async def test_gives_up_after_max_attempts(self):
        """Gives up after max attempts"""
        search = MagicMock()
        search.sync_document = AsyncMock(side_effect=MeilisearchError("down"))
        queue = RecordingQueue()
        job = {"action": "update", "entity": "Player", "entity_id": "p1",
               "attempts": config.SEARCH_JOB_MAX_ATTEMPTS - 1}
        await process_job(search, queue, job)
        assert queue.jobs == []

    @pytest.mark.anyio
    async def test_run_worker_processes_jobs(self):
        """Run worker processes jobs"""
        search = MagicMock()
        search.sync_document = AsyncMock()
        queue = MagicMock()
        queue.name = "search-sync-test"
        queue.pop = AsyncMock(side_effect=[
            {"action": "update", "entity": "Player", "entity_id": "p1"},
            None,
            {"action": "delete", "entity": "Family", "entity_id": "f1"},
        ])
        assert await run_worker(search, queue, max_jobs=2) == 2
        search.sync_document.assert_any_await("delete", "Family", "f1")
