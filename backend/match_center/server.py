import logging
from typing import Optional

from fastapi import FastAPI, APIRouter, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.middleware.cors import CORSMiddleware

from . import config
from .auth import authenticate, create_token, require_admin, require_auth, require_permission, seed_superadmin
from .cache import create_cache
from .constants import can
from .container import Container, get_container
from .database import create_client, ensure_indexes, get_database
from .errors import AppError, ValidationError
from .schemas import (
    AdminLogin, FamilyCreate, FamilyMemberAdd, FamilyOwnerChange, FamilyUpdate, MapComplete, MapCreate,
    MapTemplateCreate, MapTemplateUpdate, MapUpdate, ParticipantAdd, PlayerCreate, PlayerUpdate,
    TournamentComplete, TournamentCreate, TournamentTemplateCreate, TournamentTemplateUpdate, TournamentUpdate,
)
from .search_queue import create_search_queue
from .services.search import create_search_client

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Majestic Match Center")
api_router = APIRouter(prefix="/api")

STATUSES = ("active", "archived", "all")


# ─── Error Handlers ───

def install_error_handlers(target: FastAPI):
    @target.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        content = {"detail": exc.message}
        if exc.errors:
            content["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=content)

    @target.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})

    @target.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        logger.warning(f"Duplicate key on {request.url.path}: {exc}")
        return JSONResponse(status_code=409, content={"detail": "A record with the same unique key already exists."})

    @target.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def require_status_access(request: Request, status: str) -> dict:
    admin = await require_admin(request)
    if status not in STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STATUSES)}")
    if status != "active" and not can(admin.get("role"), "viewArchived"):
        raise HTTPException(403, "Missing permission: viewArchived")
    return admin


async def require_archive_access(request: Request, include_archived: bool) -> dict:
    if include_archived:
        return await require_permission(request, "manageEntities", "viewArchived")
    return await require_admin(request)


# ─── Auth Endpoints ───

@api_router.post("/auth/login")
async def login_admin(request: Request, body: AdminLogin):
    admin = await authenticate(get_container(request).db, body.email, body.password)
    if not admin:
        raise HTTPException(401, "Invalid credentials")
    token = create_token(admin["id"], admin["email"], admin["role"])
    return {"token": token, "user": admin}


@api_router.get("/auth/me")
async def get_me(request: Request):
    return await require_auth(request)


# ─── Dashboard & Audit ───

@api_router.get("/admin/dashboard")
async def admin_dashboard(request: Request):
    await require_admin(request)
    c = get_container(request)
    return {
        "players": await c.players_repo.count(),
        "families": await c.families_repo.count(),
        "tournaments": await c.tournaments_repo.count(),
        "active_tournaments": await c.tournaments_repo.count({"status": {"$ne": "completed"}}),
        "maps": await c.maps_repo.count(),
        "map_templates": await c.map_templates_repo.count(),
        "tournament_templates": await c.tournament_templates_repo.count(),
        "search_queue_size": await c.search_queue.size(),
    }


@api_router.get("/admin/audit")
async def list_audit_log(request: Request, entity: Optional[str] = None, entity_id: Optional[str] = None,
                         page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    await require_permission(request, "manageEntities", "viewAudit")
    return await get_container(request).audit.find(entity, entity_id, page, limit)


# ─── Player Endpoints ───

@api_router.get("/admin/players")
async def list_players(request: Request, status: str = "active", q: Optional[str] = None,
                       page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).players.list(status, page, limit, q)


@api_router.post("/admin/players", status_code=201)
async def create_player(request: Request, body: PlayerCreate):
    admin = await require_admin(request)
    return await get_container(request).players.create(body.model_dump(), admin["id"])


@api_router.get("/admin/players/slug/{slug}")
async def get_player_by_slug(request: Request, slug: str):
    await require_admin(request)
    return await get_container(request).players.get_by_slug(slug)


@api_router.get("/admin/players/{player_id}")
async def get_player(request: Request, player_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).players.get(player_id, include_archived)


@api_router.patch("/admin/players/{player_id}")
async def update_player(request: Request, player_id: str, body: PlayerUpdate):
    admin = await require_admin(request)
    return await get_container(request).players.update(player_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.patch("/admin/players/{player_id}/archive")
async def archive_player(request: Request, player_id: str):
    admin = await require_admin(request)
    return await get_container(request).players.archive(player_id, admin["id"])


@api_router.patch("/admin/players/{player_id}/restore")
async def restore_player(request: Request, player_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).players.restore(player_id, admin["id"])


# ─── Family Endpoints ───

@api_router.get("/admin/families")
async def list_families(request: Request, status: str = "active", q: Optional[str] = None,
                        page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).families.list(status, page, limit, q)


@api_router.post("/admin/families", status_code=201)
async def create_family(request: Request, body: FamilyCreate):
    admin = await require_admin(request)
    return await get_container(request).families.create(body.model_dump(), admin["id"])


@api_router.get("/admin/families/{family_id}")
async def get_family(request: Request, family_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).families.get(family_id, include_archived)


@api_router.patch("/admin/families/{family_id}")
async def update_family(request: Request, family_id: str, body: FamilyUpdate):
    admin = await require_admin(request)
    return await get_container(request).families.update(family_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.post("/admin/families/{family_id}/members")
async def add_family_member(request: Request, family_id: str, body: FamilyMemberAdd):
    await require_admin(request)
    return await get_container(request).families.add_member(family_id, body.player_id)


@api_router.delete("/admin/families/{family_id}/members/{player_id}")
async def remove_family_member(request: Request, family_id: str, player_id: str):
    await require_admin(request)
    return await get_container(request).families.remove_member(family_id, player_id)


@api_router.patch("/admin/families/{family_id}/owner")
async def change_family_owner(request: Request, family_id: str, body: FamilyOwnerChange):
    await require_admin(request)
    return await get_container(request).families.change_owner(family_id, body.new_owner_id)


@api_router.patch("/admin/families/{family_id}/archive")
async def archive_family(request: Request, family_id: str):
    admin = await require_admin(request)
    return await get_container(request).families.archive(family_id, admin["id"])


@api_router.patch("/admin/families/{family_id}/restore")
async def restore_family(request: Request, family_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).families.restore(family_id, admin["id"])


# ─── Map Template Endpoints ───

@api_router.get("/admin/map-templates")
async def list_map_templates(request: Request, status: str = "active", search: Optional[str] = None,
                             page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).map_templates.list(status, page, limit, search)


@api_router.post("/admin/map-templates", status_code=201)
async def create_map_template(request: Request, body: MapTemplateCreate):
    admin = await require_admin(request)
    return await get_container(request).map_templates.create(body.model_dump(), admin["id"])


@api_router.get("/admin/map-templates/{template_id}")
async def get_map_template(request: Request, template_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).map_templates.get(template_id, include_archived)


@api_router.patch("/admin/map-templates/{template_id}")
async def update_map_template(request: Request, template_id: str, body: MapTemplateUpdate):
    admin = await require_admin(request)
    return await get_container(request).map_templates.update(
        template_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.patch("/admin/map-templates/{template_id}/archive")
async def archive_map_template(request: Request, template_id: str):
    admin = await require_admin(request)
    return await get_container(request).map_templates.archive(template_id, admin["id"])


@api_router.patch("/admin/map-templates/{template_id}/restore")
async def restore_map_template(request: Request, template_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).map_templates.restore(template_id, admin["id"])


# ─── Tournament Template Endpoints ───

@api_router.get("/admin/tournament-templates")
async def list_tournament_templates(request: Request, status: str = "active", search: Optional[str] = None,
                                    page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).tournament_templates.list(status, page, limit, search)


@api_router.post("/admin/tournament-templates", status_code=201)
async def create_tournament_template(request: Request, body: TournamentTemplateCreate):
    admin = await require_admin(request)
    return await get_container(request).tournament_templates.create(body.model_dump(), admin["id"])


@api_router.get("/admin/tournament-templates/{template_id}")
async def get_tournament_template(request: Request, template_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).tournament_templates.get(template_id, include_archived)


@api_router.patch("/admin/tournament-templates/{template_id}")
async def update_tournament_template(request: Request, template_id: str, body: TournamentTemplateUpdate):
    admin = await require_admin(request)
    return await get_container(request).tournament_templates.update(
        template_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.patch("/admin/tournament-templates/{template_id}/archive")
async def archive_tournament_template(request: Request, template_id: str):
    admin = await require_admin(request)
    return await get_container(request).tournament_templates.archive(template_id, admin["id"])


@api_router.patch("/admin/tournament-templates/{template_id}/restore")
async def restore_tournament_template(request: Request, template_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).tournament_templates.restore(template_id, admin["id"])


# ─── Tournament Endpoints ───

@api_router.get("/admin/tournaments")
async def list_tournaments(request: Request, status: str = "active", q: Optional[str] = None,
                           tournament_status: Optional[str] = None,
                           page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).tournaments.list(status, page, limit, q, tournament_status)


@api_router.post("/admin/tournaments", status_code=201)
async def create_tournament(request: Request, body: TournamentCreate):
    admin = await require_admin(request)
    return await get_container(request).tournaments.create(body.model_dump(), admin["id"])


@api_router.get("/admin/tournaments/slug/{slug}")
async def get_tournament_by_slug(request: Request, slug: str):
    await require_admin(request)
    return await get_container(request).tournaments.get_by_slug(slug)


@api_router.get("/admin/tournaments/{tournament_id}")
async def get_tournament(request: Request, tournament_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).tournaments.get(tournament_id, include_archived)


@api_router.patch("/admin/tournaments/{tournament_id}")
async def update_tournament(request: Request, tournament_id: str, body: TournamentUpdate):
    admin = await require_admin(request)
    return await get_container(request).tournaments.update(
        tournament_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.patch("/admin/tournaments/{tournament_id}/archive")
async def archive_tournament(request: Request, tournament_id: str):
    admin = await require_admin(request)
    return await get_container(request).tournaments.archive(tournament_id, admin["id"])


@api_router.patch("/admin/tournaments/{tournament_id}/restore")
async def restore_tournament(request: Request, tournament_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).tournaments.restore(tournament_id, admin["id"])


@api_router.post("/admin/tournaments/{tournament_id}/participants")
async def add_tournament_participant(request: Request, tournament_id: str, body: ParticipantAdd):
    await require_admin(request)
    return await get_container(request).tournaments.add_participant(tournament_id, body.model_dump())


@api_router.delete("/admin/tournaments/{tournament_id}/participants/{participant_id}")
async def remove_tournament_participant(request: Request, tournament_id: str, participant_id: str):
    await require_admin(request)
    return await get_container(request).tournaments.remove_participant(tournament_id, participant_id)


@api_router.get("/admin/tournaments/{tournament_id}/stats")
async def get_tournament_stats(request: Request, tournament_id: str):
    await require_admin(request)
    return await get_container(request).tournaments.get_stats(tournament_id)


@api_router.post("/admin/tournaments/{tournament_id}/complete")
async def complete_tournament(request: Request, tournament_id: str, body: TournamentComplete):
    admin = await require_admin(request)
    return await get_container(request).tournaments.complete(tournament_id, body.model_dump(), admin["id"])


# ─── Map Endpoints ───

@api_router.get("/admin/maps")
async def list_maps(request: Request, status: str = "active", tournament: Optional[str] = None,
                    map_status: Optional[str] = None,
                    page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    await require_status_access(request, status)
    return await get_container(request).maps.list(status, page, limit, tournament, map_status)


@api_router.post("/admin/maps", status_code=201)
async def create_map(request: Request, body: MapCreate):
    admin = await require_admin(request)
    return await get_container(request).maps.create(body.model_dump(), admin["id"])


@api_router.get("/admin/maps/{map_id}")
async def get_map(request: Request, map_id: str, include_archived: bool = False):
    await require_archive_access(request, include_archived)
    return await get_container(request).maps.get(map_id, include_archived)


@api_router.patch("/admin/maps/{map_id}")
async def update_map(request: Request, map_id: str, body: MapUpdate):
    admin = await require_admin(request)
    return await get_container(request).maps.update(map_id, body.model_dump(exclude_unset=True), admin["id"])


@api_router.patch("/admin/maps/{map_id}/archive")
async def archive_map(request: Request, map_id: str):
    admin = await require_admin(request)
    return await get_container(request).maps.archive(map_id, admin["id"])


@api_router.patch("/admin/maps/{map_id}/restore")
async def restore_map(request: Request, map_id: str):
    admin = await require_permission(request, "manageEntities", "unarchive")
    return await get_container(request).maps.restore(map_id, admin["id"])


@api_router.post("/admin/maps/{map_id}/complete")
async def complete_map(request: Request, map_id: str, body: MapComplete):
    admin = await require_admin(request)
    return await get_container(request).maps.complete(map_id, body.model_dump(), admin["id"])


@api_router.post("/admin/maps/{map_id}/rollback")
async def rollback_map(request: Request, map_id: str):
    admin = await require_admin(request)
    return await get_container(request).maps.rollback(map_id, admin["id"])


# ─── Search Endpoints ───

@api_router.get("/admin/search")
async def search(request: Request, q: str = "", entities: str = "", status: str = "active",
                 limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0)):
    await require_status_access(request, status)
    entity_list = [e.strip() for e in entities.split(",") if e.strip()]
    if not q.strip() or not entity_list:
        raise ValidationError("Both q and entities are required.")
    return await get_container(request).search.search(q.strip(), entity_list, status, limit, offset)


@api_router.post("/admin/search/reindex", status_code=202)
async def reindex_search(request: Request):
    await require_admin(request)
    result = await get_container(request).search.reindex_all()
    return {"message": "Reindex jobs enqueued.", "data": result}


# ─── App Setup ───

app.include_router(api_router)
install_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

client = create_client()
app.state.container = Container(get_database(client), create_cache(), create_search_queue(), create_search_client())


@app.on_event("startup")
async def startup():
    container = app.state.container
    await ensure_indexes(container.db)
    await seed_superadmin(container.db)
    await container.search.init()
    logger.info("Majestic Match Center started")


@app.on_event("shutdown")
async def shutdown_clients():
    container = app.state.container
    if container.cache.client is not None:
        await container.cache.client.aclose()
    if container.search_queue.client is not None:
        await container.search_queue.client.aclose()
    client.close()
