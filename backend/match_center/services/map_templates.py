import re
from typing import Optional

from ..errors import ConflictError, DuplicateError, NotFoundError
from ..utils import slugify


class MapTemplateService:
    def __init__(self, map_templates):
        self.map_templates = map_templates

    async def _validate_uniqueness(self, name: str, slug: str, template_id: Optional[str] = None):
        if await self.map_templates.find_active_by_name_or_slug(name, slug, exclude_id=template_id):
            raise DuplicateError(f"An active map template named '{name}' already exists.")

    async def create(self, data: dict, actor_id: Optional[str] = None) -> dict:
        slug = slugify(data["name"])
        await self._validate_uniqueness(data["name"], slug)
        return await self.map_templates.create({**data, "slug": slug, "usage_count": 0}, actor_id)

    async def list(self, status: str = "active", page: int = 1, limit: int = 10, search: Optional[str] = None) -> dict:
        query = {}
        if search:
            query["name"] = {"$regex": re.escape(search.strip()), "$options": "i"}
        return await self.map_templates.find(query, None, page, limit, status)

    async def get(self, template_id: str, include_archived: bool = False) -> dict:
        template = await self.map_templates.find_by_id(template_id, include_archived=include_archived)
        if not template:
            raise NotFoundError("Map template not found.")
        return template

    async def update(self, template_id: str, data: dict, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id)
        if data.get("name") and data["name"] != template["name"]:
            data["slug"] = slugify(data["name"])
            await self._validate_uniqueness(data["name"], data["slug"], template_id)
        if not data:
            return template
        return await self.map_templates.update(template_id, data, actor_id=actor_id)

    async def archive(self, template_id: str, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id, include_archived=True)
        if template.get("archived_at"):
            raise ConflictError("Map template is already archived.")
        return await self.map_templates.archive(template_id, actor_id)

    async def restore(self, template_id: str, actor_id: Optional[str] = None) -> dict:
        template = await self.get(template_id, include_archived=True)
        if not template.get("archived_at"):
            raise ConflictError("Map template is not archived.")
        if await self.map_templates.find_active_by_name_or_slug(template["name"], template["slug"], exclude_id=template_id):
            raise ConflictError(f"Cannot restore: an active map template named '{template['name']}' already exists.")
        return await self.map_templates.restore(template_id, actor_id)
