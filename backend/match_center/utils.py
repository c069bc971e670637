import re
import uuid
from datetime import datetime, timezone


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def slugify(value: str) -> str:
    return re.sub(r"(^-|-$)+", "", re.sub(r"[^a-z0-9]+", "-", (value or "").lower()))


def capitalize(value: str) -> str:
    if not value:
        return ""
    return value[0].upper() + value[1:]


def parse_datetime(value) -> datetime:
    """Accepts datetimes or ISO strings; naive values are treated as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value):
    if value is None:
        return None
    return parse_datetime(value).isoformat()


def diff_fields(before: dict, after: dict) -> dict:
    changes = {}
    for key in set(before) | set(after):
        if key in ("updated_at",):
            continue
        if before.get(key) != after.get(key):
            changes[key] = {"from": before.get(key), "to": after.get(key)}
    return changes
