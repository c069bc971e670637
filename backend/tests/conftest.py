import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from match_center.auth import create_token
from match_center.cache import TaggedCache
from match_center.container import Container
from match_center.server import app, install_error_handlers
from match_center.utils import new_id, now_iso


class RecordingQueue:
    """In-process stand-in for the Redis search queue."""

    name = "search-sync-test"

    def __init__(self):
        self.jobs = []
        self.client = None

    async def enqueue(self, action, entity, entity_id, attempts=0):
        self.jobs.append({"action": action, "entity": entity, "entity_id": entity_id, "attempts": attempts})
        return True

    async def size(self):
        return len(self.jobs)

    async def clear(self):
        pending = len(self.jobs)
        self.jobs.clear()
        return pending


def run(coro):
    """Runs a mongomock-motor coroutine from synchronous test code."""
    return asyncio.run(coro)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    return AsyncMongoMockClient()["match_center_test"]


@pytest.fixture
def container(db):
    return Container(db, TaggedCache(None), RecordingQueue(), MagicMock())


@pytest.fixture
def client(container):
    # Bare app without startup hooks so nothing touches a real MongoDB
    test_app = FastAPI()
    for route in app.routes:
        test_app.routes.append(route)
    install_error_handlers(test_app)
    test_app.state.container = container
    with TestClient(test_app) as c:
        yield c


def make_admin_headers(container, role):
    admin = {
        "id": new_id(), "email": f"{role}-{new_id()[:8]}@majestic.gg", "username": role,
        "password_hash": "unused", "role": role, "created_at": now_iso(),
    }
    run(container.db.admin_users.insert_one(dict(admin)))
    return {"Authorization": f"Bearer {create_token(admin['id'], admin['email'], role)}"}


@pytest.fixture
def super_headers(container):
    return make_admin_headers(container, "super")


@pytest.fixture
def admin_headers(container):
    return make_admin_headers(container, "admin")


@pytest.fixture
def moderator_headers(container):
    return make_admin_headers(container, "moderator")


def iso_in(days: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


class Api:
    """Thin helpers that create fixtures through the HTTP API."""

    def __init__(self, client, headers):
        self.client = client
        self.headers = headers

    def _post(self, path, body, expected=201):
        response = self.client.post(f"/api/admin{path}", json=body, headers=self.headers)
        assert response.status_code == expected, response.text
        return response.json()

    def player(self, first_name, last_name, **extra):
        return self._post("/players", {"first_name": first_name, "last_name": last_name, **extra})

    def family(self, name, owner_id, display_last_name="Corleone", members=()):
        family = self._post("/families", {"name": name, "display_last_name": display_last_name, "owner": owner_id})
        for player_id in members:
            family = self._post(f"/families/{family['id']}/members", {"player_id": player_id}, expected=200)
        return family

    def map_template(self, name, **extra):
        return self._post("/map-templates", {"name": name, **extra})

    def tournament_template(self, name, map_template_ids, prize_pool=None, **extra):
        body = {"name": name, "map_templates": map_template_ids, "prize_pool": prize_pool or [], **extra}
        return self._post("/tournament-templates", body)

    def tournament(self, template_id, start_date=None, **extra):
        return self._post("/tournaments", {"template_id": template_id, "start_date": start_date or iso_in(-1), **extra})

    def participant(self, tournament_id, family_id):
        return self._post(f"/tournaments/{tournament_id}/participants", {"family_id": family_id}, expected=200)

    def map(self, tournament_id, template_id, participants=(), start=None):
        return self._post("/maps", {
            "tournament_id": tournament_id, "template_id": template_id,
            "start_date_time": start or iso_in(-0.1),
            "participants": [{"participant": p, "players": []} for p in participants],
        })


@pytest.fixture
def api(client, super_headers):
    return Api(client, super_headers)


@pytest.fixture
def arena(api):
    """Two families registered in one tournament with one map template."""
    vito = api.player("Vito", "Corleone")
    michael = api.player("Michael", "Corleone")
    emilio = api.player("Emilio", "Barzini")
    corleone = api.family("Corleone Family", vito["id"], "Corleone", members=[michael["id"]])
    barzini = api.family("Barzini Family", emilio["id"], "Barzini")
    map_template = api.map_template("Docks Warehouse")
    template = api.tournament_template("Majestic Cup", [map_template["id"]], prize_pool=[
        {"target": {"tier": "winner"}, "currency": "MajesticCoins", "amount": 1000},
        {"target": {"tier": "runner_up"}, "currency": "GTADollars", "amount": 500},
    ])
    tournament = api.tournament(template["id"])
    api.participant(tournament["id"], corleone["id"])
    api.participant(tournament["id"], barzini["id"])
    return {
        "vito": vito, "michael": michael, "emilio": emilio,
        "corleone": corleone, "barzini": barzini,
        "map_template": map_template, "template": template, "tournament": tournament,
    }
