"""
MongoDB access for the Event Planning API.

The connection is configured from the environment (a local .env is honoured):
- DATABASE_URL: mongodb connection string
- DATABASE_NAME: database to use (defaults to "event_planning")

When DATABASE_URL is not set, `db` is None and the API reports the database
as unavailable instead of failing at import time.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from errors import BadRequest

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "event_planning")

client: Optional[MongoClient] = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None

# Unique business keys per collection
UNIQUE_KEYS = {
    "user": ["userId", "userName"],
    "customer": ["C_ID", "userName"],
    "admin": ["A_ID", "userName"],
    "event": ["E_ID"],
    "package": ["Pg_ID"],
    "payment": ["P_ID"],
}


def get_db():
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise BadRequest("Invalid id")


def sanitize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def ensure_indexes(database) -> None:
    for collection, keys in UNIQUE_KEYS.items():
        for key in keys:
            database[collection].create_index([(key, ASCENDING)], unique=True)
    database["payment"].create_index([("p_date", DESCENDING)])
    database["payment"].create_index([("customerId", ASCENDING)])
    database["feedback"].create_index([("customerId", ASCENDING)])
    database["package"].create_index([("event", ASCENDING)])
    logger.debug("Indexes ensured on %s", getattr(database, "name", "database"))


def create_document(database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a document stamped with createdAt/updatedAt and return it with its _id."""
    doc = dict(data)
    stamp = now()
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    res = database[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(database, collection_name: str, filter_dict: Dict[str, Any],
                    fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return database[collection_name].find_one_and_update(
        filter_dict,
        {"$set": {**fields, "updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )


@contextmanager
def transaction(database):
    """Run the enclosed block in one multi-document transaction.

    Leaving the block normally commits; any exception aborts the whole
    transaction and propagates. Requires a replica set or mongos.
    """
    with database.client.start_session() as session:
        with session.start_transaction():
            yield session
