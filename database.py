"""
Database helpers

Thin wrapper around a pymongo database handle. Collections are addressed by
the lowercase name of the matching schema class in schemas.py.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI") or "mongodb://localhost:27017"
DATABASE_NAME = os.getenv("DATABASE_NAME", "docushop")

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def get_collection(name: str):
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created/updated timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = get_collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = get_collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    users = get_collection("user")
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("username", ASCENDING)], unique=True, sparse=True)
    users.create_index(
        [("role", ASCENDING)],
        unique=True,
        partialFilterExpression={"role": "admin"},
        name="single_admin",
    )
    logger.info("Indexes ensured on %s", db.name)
