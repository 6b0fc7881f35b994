import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

FILES = "files"
FOLDERS = "folders"

settings = get_settings()

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url:
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]
else:
    logger.warning("DATABASE_URL is not set; the drive API will answer 500 until it is")


def ensure_indexes(database: Database):
    """Create the indexes the listing and sibling-name queries rely on."""
    database[FILES].create_index(
        [("owner_id", ASCENDING), ("folder_id", ASCENDING), ("is_trashed", ASCENDING), ("created_at", DESCENDING)]
    )
    database[FILES].create_index("storage_path", unique=True)
    database[FOLDERS].create_index(
        [("owner_id", ASCENDING), ("parent_id", ASCENDING), ("is_trashed", ASCENDING), ("created_at", DESCENDING)]
    )
    database[FOLDERS].create_index([("owner_id", ASCENDING), ("parent_id", ASCENDING), ("name", ASCENDING)])
