import logging
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from fastapi import HTTPException, Request
from jose import jwt as jose_jwt, JWTError

from . import config
from .constants import can
from .utils import new_id, now_iso

logger = logging.getLogger(__name__)

ADMIN_PROJECTION = {"_id": 0, "password_hash": 0}


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))


def create_token(admin_id: str, email: str, role: str) -> str:
    exp = datetime.now(timezone.utc).timestamp() + config.JWT_TTL_SECONDS
    payload = {"admin_id": admin_id, "email": email, "role": role, "exp": exp}
    return jose_jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


async def get_current_admin(request: Request) -> Optional[dict]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = jose_jwt.decode(auth_header[7:], config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        return None
    db = request.app.state.container.db
    return await db.admin_users.find_one({"id": payload.get("admin_id")}, ADMIN_PROJECTION)


async def require_auth(request: Request) -> dict:
    admin = await get_current_admin(request)
    if not admin:
        raise HTTPException(401, "Not authenticated")
    return admin


async def require_permission(request: Request, *permissions: str) -> dict:
    admin = await require_auth(request)
    for permission in permissions:
        if not can(admin.get("role"), permission):
            raise HTTPException(403, f"Missing permission: {permission}")
    return admin


async def require_admin(request: Request) -> dict:
    return await require_permission(request, "manageEntities")


async def authenticate(db, email: str, password: str) -> Optional[dict]:
    admin = await db.admin_users.find_one({"email": email.strip().lower()}, {"_id": 0})
    if not admin or not verify_password(password, admin["password_hash"]):
        return None
    admin.pop("password_hash")
    return admin


async def seed_superadmin(db):
    existing_super = await db.admin_users.find_one({"role": "super"}, {"_id": 0})
    if existing_super:
        logger.info(f"Super admin already exists ({existing_super.get('email', 'unknown')}); configured admin not created")
        return

    email = config.SUPERADMIN_EMAIL
    existing_with_email = await db.admin_users.find_one({"email": email}, {"_id": 0})
    if existing_with_email:
        await db.admin_users.update_one(
            {"id": existing_with_email["id"]},
            {"$set": {"role": "super", "updated_at": now_iso()}},
        )
        logger.info(f"Promoted existing admin to super: {email}")
        return

    await db.admin_users.insert_one({
        "id": new_id(), "email": email, "username": email.split("@")[0] or "admin",
        "password_hash": hash_password(config.SUPERADMIN_PASSWORD), "role": "super",
        "created_at": now_iso(), "updated_at": now_iso(),
    })
    logger.info(f"Super admin seeded: {email}")
