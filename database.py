"""
MongoDB access for the catalog backend.

`db` is None until DATABASE_URL and DATABASE_NAME are configured, so the app
can still boot (and report its state on /test) without a database.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert a document with timestamps and return its id as a string."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now()
    doc["createdAt"] = stamp
    doc["updatedAt"] = stamp
    inserted_id = target[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def ensure_indexes(database: Database) -> None:
    """Create the unique constraints the catalog relies on."""
    database["category"].create_index([("name", ASCENDING)], unique=True)
    database["subcategory"].create_index([("name", ASCENDING), ("category", ASCENDING)], unique=True)
    database["product"].create_index([("productCode", ASCENDING)], unique=True)
    database["product"].create_index([("category", ASCENDING)])
    database["user"].create_index([("email", ASCENDING)], unique=True)
    logger.info("Indexes ensured on %s", database.name)
