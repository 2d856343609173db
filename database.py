"""
MongoDB access shared by every router.

Routes receive the database through the ``get_db`` dependency so tests can
swap in a mongomock database with ``app.dependency_overrides``.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

T = TypeVar("T")

client = MongoClient(config.DATABASE_URL, tz_aware=True, serverSelectionTimeoutMS=5000)
db = client[config.DATABASE_NAME]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_indexes(database: Database) -> None:
    """Create the unique indexes that back the data model's uniqueness rules."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["category"].create_index([("slug", ASCENDING)], unique=True)
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["product"].create_index([("category_id", ASCENDING)])
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["wishlist_item"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    logger.info("Indexes ensured on database %s", database.name)


def run_in_transaction(database: Database, callback: Callable[[Optional[ClientSession]], T]) -> T:
    """Run ``callback(session)`` inside a multi-document transaction.

    pymongo retries the callback on transient transaction errors and aborts
    on any other exception. With transactions disabled the callback gets
    ``None`` and is responsible for undoing its own partial writes.
    """
    if not config.DATABASE_TRANSACTIONS:
        return callback(None)
    with database.client.start_session() as session:
        return session.with_transaction(callback)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        key = "id" if k == "_id" else k
        out[key] = _serialize_value(v)
    return out


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def page_params(page: Optional[int], limit: Optional[int], default_limit: int, max_limit: int) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = min(max_limit, max(1, limit or default_limit))
    return page, limit


def paginate(
    collection,
    query: Dict[str, Any],
    sort: List[Tuple[str, int]],
    page: int,
    limit: int,
    transform: Callable[[Dict[str, Any]], Any] = serialize_doc,
) -> Dict[str, Any]:
    total = collection.count_documents(query)
    cursor = collection.find(query).sort(sort).skip((page - 1) * limit).limit(limit)
    return {
        "data": [transform(d) for d in cursor],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
