"""
MongoDB connection and the small document helpers the routes share.

`db` stays None when DATABASE_URL / DATABASE_NAME are not configured; the
API reports that through /test and get_db() instead of failing at import.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, maxPoolSize=10)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so everything stored is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(
    collection_name: str,
    data: Union[BaseModel, Dict[str, Any]],
    database: Optional[Database] = None,
) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database: Optional[Database] = None,
) -> List[Dict[str, Any]]:
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db
