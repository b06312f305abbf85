"""
Database helpers

MongoDB connection plus a few thin helpers shared by the services. The
collections themselves (users, products, cart_items, orders, order_items,
user_roles) are documented in schemas.py.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from settings import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db():
    """FastAPI dependency, overridden in tests with an in-memory database."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def ensure_indexes(database):
    database["users"].create_index("email", unique=True)
    database["user_roles"].create_index([("user_id", ASCENDING), ("role", ASCENDING)], unique=True)
    # one cart line per (user, product)
    database["cart_items"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order_items"].create_index("order_id")


def now():
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  newest_first: bool = False, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a path id, None when it is not a valid ObjectId."""
    if not value:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


# Utility to convert Mongo _id to string
def serialize_doc(doc: Optional[dict]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
    return doc


@contextmanager
def store_errors(detail: str):
    """Turn driver failures into a 503 carrying a user-facing message."""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"{detail}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=detail)
