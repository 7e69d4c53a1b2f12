"""
Database Helper Functions

MongoDB helper functions shared by the API routes and the inventory logic.
The connection comes from DATABASE_URL / DATABASE_NAME; tests swap in their
own client through init_db().
"""

import logging
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pydantic import BaseModel

import settings
from errors import DatabaseUnavailable

logger = logging.getLogger(__name__)

_client = None
db = None


def init_db(client=None, name: Optional[str] = None):
    """Bind the module to a database. Without arguments the environment settings are used."""
    global _client, db
    if client is None:
        if not (settings.DATABASE_URL and settings.DATABASE_NAME):
            _client, db = None, None
            return None
        client = MongoClient(settings.DATABASE_URL)
    _client = client
    db = client[name or settings.DATABASE_NAME or "guitarstore"]
    return db


init_db()


def _ensure_db():
    if db is None:
        raise DatabaseUnavailable()


def collection(name: str):
    _ensure_db()
    return db[name]


def now() -> datetime:
    return datetime.now(timezone.utc)


def object_id(doc_id: Any) -> Optional[ObjectId]:
    """Parse an id string, returning None when it is not a valid ObjectId"""
    if isinstance(doc_id, ObjectId):
        return doc_id
    try:
        return ObjectId(str(doc_id))
    except (InvalidId, TypeError):
        return None


def ensure_indexes():
    _ensure_db()
    db["user"].create_index("email", unique=True)
    db["order"].create_index([("user_id", 1), ("created_at", -1)])
    logger.info("Indexes ensured on database %s", db.name)


def create_document(collection_name: str, data: Union[BaseModel, dict]):
    """Insert a single document with timestamp"""
    _ensure_db()

    # Convert Pydantic model to dict if needed
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    stamp = now()
    data_dict['created_at'] = stamp
    data_dict['updated_at'] = stamp

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None):
    """Get documents from collection"""
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document_by_id(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    """Get a single document by _id string"""
    _ensure_db()
    oid = object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid})


def update_document(collection_name: str, doc_id: str, data: dict) -> bool:
    """Update a document by id with $set and updated_at. Returns whether it matched."""
    _ensure_db()
    oid = object_id(doc_id)
    if oid is None:
        return False
    data = data.copy()
    data['updated_at'] = now()
    res = db[collection_name].update_one({"_id": oid}, {"$set": data})
    return res.matched_count > 0


def delete_document(collection_name: str, doc_id: str) -> bool:
    """Delete a document by id"""
    _ensure_db()
    oid = object_id(doc_id)
    if oid is None:
        return False
    res = db[collection_name].delete_one({"_id": oid})
    return res.deleted_count > 0


def serialize_doc(doc: Optional[dict], hidden: tuple = ()) -> Optional[dict]:
    """Expose _id as a string id and drop private fields"""
    if not doc:
        return doc
    d = {k: v for k, v in doc.items() if k not in hidden}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d
