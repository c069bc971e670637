import os
import logging
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(ROOT_DIR / '.env')

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "match_center")

JWT_SECRET = os.environ.get("JWT_SECRET", "majestic-match-center-dev-secret")
JWT_ALGORITHM = "HS256"
JWT_TTL_SECONDS = int(os.environ.get("JWT_TTL_SECONDS", 86400 * 7))

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
CACHE_DRIVER = os.environ.get("CACHE_DRIVER", "redis").strip().lower()

MEILISEARCH_HOST = os.environ.get("MEILISEARCH_HOST", "").strip()
MEILISEARCH_MASTER_KEY = os.environ.get("MEILISEARCH_MASTER_KEY", "").strip()
SEARCH_QUEUE_NAME = os.environ.get("SEARCH_QUEUE_NAME", "search-sync")
SEARCH_JOB_MAX_ATTEMPTS = int(os.environ.get("SEARCH_JOB_MAX_ATTEMPTS", 3))

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

SUPERADMIN_EMAIL = os.environ.get("SUPERADMIN_EMAIL", "admin@majestic.gg").strip().lower()
SUPERADMIN_PASSWORD = os.environ.get("SUPERADMIN_PASSWORD", "admin123")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
