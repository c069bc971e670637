#!/usr/bin/env python3
"""Seed deterministic demo data for local previews."""

from __future__ import annotations

import argparse
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List

from pymongo import MongoClient

from match_center import config
from match_center.auth import hash_password
from match_center.constants import DEFAULT_PLAYER_AVATAR
from match_center.services.statistics import empty_family_stats, empty_player_stats
from match_center.utils import slugify

DEMO_COLLECTIONS = [
    "players", "families", "map_templates", "tournament_templates", "tournaments", "player_stats", "family_stats",
]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def demo_id(name: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"majestic-demo:{name}"))


def upsert(collection, doc: Dict, ts: str) -> Dict:
    collection.update_one(
        {"id": doc["id"]},
        {"$set": {**doc, "is_demo": True, "updated_at": ts}, "$setOnInsert": {"created_at": ts, "archived_at": None}},
        upsert=True,
    )
    return doc


def seed_superadmin(db, ts: str) -> None:
    if db.admin_users.find_one({"role": "super"}, {"_id": 0, "id": 1}):
        return
    db.admin_users.update_one(
        {"email": config.SUPERADMIN_EMAIL},
        {
            "$set": {"role": "super", "password_hash": hash_password(config.SUPERADMIN_PASSWORD), "updated_at": ts},
            "$setOnInsert": {"id": demo_id("admin:super"), "username": "superadmin", "created_at": ts},
        },
        upsert=True,
    )


def seed_demo_data(reset: bool = False) -> None:
    client = MongoClient(config.MONGO_URL)
    db = client[config.DB_NAME]
    ts = now_iso()

    if reset:
        for name in DEMO_COLLECTIONS:
            db[name].delete_many({"is_demo": True})

    seed_superadmin(db, ts)

    player_names = [
        ("Tony", "Vercetti"), ("Lance", "Vance"), ("Ricardo", "Diaz"),
        ("Carl", "Johnson"), ("Sean", "Johnson"), ("Melvin", "Harris"),
        ("Niko", "Bellic"), ("Roman", "Bellic"),
    ]
    players: Dict[str, Dict] = {}
    for first, last in player_names:
        slug = slugify(f"{first}-{last}")
        players[slug] = upsert(db.players, {
            "id": demo_id(f"player:{slug}"), "first_name": first, "last_name": last, "slug": slug,
            "avatar": DEFAULT_PLAYER_AVATAR, "bio": None, "rating": 0, "current_family": None,
            "social_links": {}, "seo": {},
        }, ts)
        db.player_stats.update_one(
            {"player_id": players[slug]["id"]},
            {"$setOnInsert": {"id": demo_id(f"player-stats:{slug}"), "is_demo": True, "created_at": ts,
                              **empty_player_stats()}},
            upsert=True,
        )

    family_defs = [
        {"name": "Vice City Kings", "display_last_name": "Vercetti", "owner": "tony-vercetti",
         "members": ["tony-vercetti", "lance-vance", "ricardo-diaz"]},
        {"name": "Grove Street", "display_last_name": "Johnson", "owner": "carl-johnson",
         "members": ["carl-johnson", "sean-johnson", "melvin-harris"]},
        {"name": "Liberty Brothers", "display_last_name": "Bellic", "owner": "niko-bellic",
         "members": ["niko-bellic", "roman-bellic"]},
    ]
    families: List[Dict] = []
    for family_def in family_defs:
        slug = slugify(family_def["name"])
        family_id = demo_id(f"family:{slug}")
        members = [
            {"player": players[key]["id"], "role": "owner" if key == family_def["owner"] else "member", "joined_at": ts}
            for key in family_def["members"]
        ]
        families.append(upsert(db.families, {
            "id": family_id, "name": family_def["name"], "display_last_name": family_def["display_last_name"], "slug": slug,
            "owner": players[family_def["owner"]]["id"], "description": "Demo family", "logo": None, "banner": None,
            "rating": 0, "members": members, "seo": {},
        }, ts))
        db.players.update_many({"id": {"$in": [m["player"] for m in members]}}, {"$set": {"current_family": family_id}})
        db.family_stats.update_one(
            {"family_id": family_id},
            {"$setOnInsert": {"id": demo_id(f"family-stats:{slug}"), "is_demo": True, "created_at": ts,
                              **empty_family_stats()}},
            upsert=True,
        )

    map_templates = []
    for name in ["Downtown Rooftops", "Docks Warehouse", "Desert Airfield"]:
        slug = slugify(name)
        map_templates.append(upsert(db.map_templates, {
            "id": demo_id(f"map-template:{slug}"), "name": name, "slug": slug,
            "description": f"{name} demo arena", "map_image": None, "usage_count": 0,
        }, ts))

    template = upsert(db.tournament_templates, {
        "id": demo_id("tournament-template:majestic-cup"), "name": "Majestic Cup", "slug": "majestic-cup",
        "description": "Weekly family cup", "rules": "Best of three maps", "default_image": None,
        "map_templates": [m["id"] for m in map_templates],
        "prize_pool": [
            {"target": {"tier": "winner", "rank": 1}, "currency": "MajesticCoins", "amount": 3000},
            {"target": {"tier": "runner_up", "rank": 2}, "currency": "MajesticCoins", "amount": 1500},
            {"target": {"tier": "third_place", "rank": 3}, "currency": "GTADollars", "amount": 500000},
        ],
        "usage_count": 1,
    }, ts)

    start = datetime.now(timezone.utc) + timedelta(days=7)
    upsert(db.tournaments, {
        "id": demo_id("tournament:majestic-cup-1"), "name": "Majestic Cup #1", "slug": "majestic-cup-1",
        "template": template["id"], "tournament_type": "family", "status": "planned",
        "start_date": start.isoformat(), "end_date": (start + timedelta(hours=4)).isoformat(),
        "description": template["description"], "rules": template["rules"], "prize_pool": template["prize_pool"],
        "participants": [
            {"id": demo_id(f"participant:{f['slug']}"), "participant_type": "family", "family": f["id"]}
            for f in families
        ],
        "winner": None, "mvp": None,
    }, ts)

    print("Demo data imported.")
    print("Super admin:", config.SUPERADMIN_EMAIL)

    client.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo players, families, templates and a tournament.")
    parser.add_argument("--reset", action="store_true", help="Delete existing demo data before seeding.")
    args = parser.parse_args()
    seed_demo_data(reset=args.reset)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
