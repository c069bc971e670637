import re
from typing import List, Optional

from ..errors import ConflictError, DuplicateError, NotFoundError
from ..utils import slugify


class TournamentTemplateService:
    def __init__(self, tournament_templates, map_templates):
        self.tournament_templates = tournament_templates
        self.map_templates = map_templates

    async def _validate_map_templates(self, map_template_ids: List[str]):
        found = await self.map_templates.find_all({"id": {"$in": map_template_ids}}, include_archived=True)
        by_id = {t["id"]: t for t in found}
        for template_id in map_template_ids:
            template = by_id.get(template_id)
            if not template:
                raise NotFoundError(f"Map template {template_id} not found.")
            if template.get("archived_at"):
                raise ConflictError(f"Archived map template '{template['name']}' cannot be used.")

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        if await self.tournament_templates.find_by_name(data["name"], include_archived=False):
            raise DuplicateError(f"Tournament template '{data['name']}' already exists.")
        await self._validate_map_templates(data["map_templates"])
        doc = {
            **data,
            "slug": await self.tournament_templates.unique_slug(slugify(data["name"])),
            "usage_count": 0,
        }
        return await self.tournament_templates.create(doc, actor_id)

    async def list(self, status: str = "active", page: int = 1, limit: int = 10, search: Optional[str] = None) -> dict:
        query = {}
        if search:
            query["name"] = {"$regex": re.escape(search.strip()), "$options": "i"}
        return await self.tournament_templates.find(query, None, page, limit, status)

    async def get(self, template_id: str, include_archived: bool = False) -> dict:
        template = await self.tournament_templates.find_by_id(template_id, include_archived=include_archived)
        if not template:
            raise NotFoundError(f"Tournament template {template_id} not found.")
        return template

    async def update(self, template_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id)
        if data.get("name") and data["name"] != template["name"]:
            if await self.tournament_templates.find_by_name(data["name"], exclude_id=template_id, include_archived=False):
                raise DuplicateError(f"Tournament template '{data['name']}' already exists.")
            data["slug"] = await self.tournament_templates.unique_slug(slugify(data["name"]), exclude_id=template_id)
        if data.get("map_templates"):
            await self._validate_map_templates(data["map_templates"])
        if not data:
            return template
        return await self.tournament_templates.update(template_id, data, actor_id=actor_id)

    async def archive(self, template_id: str, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id, include_archived=True)
        if template.get("archived_at"):
            raise ConflictError("Tournament template is already archived.")
        return await self.tournament_templates.archive(template_id, actor_id)

    async def restore(self, template_id: str, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id, include_archived=True)
        if not template.get("archived_at"):
            raise ConflictError("Tournament template is not archived.")
        if await self.tournament_templates.find_by_name(template["name"], exclude_id=template_id, include_archived=False):
            raise ConflictError(f"Cannot restore: an active template named '{template['name']}' already exists.")
        return await self.tournament_templates.restore(template_id, actor_id)
