"""
MongoDB access helpers.

Collections: users, hotels, bookings, reviews, favorites.
Stored datetimes are naive UTC.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import NotFound
from settings import settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(settings.database_url or None, tz_aware=False)
        logger.info("MongoDB client created for database %s", settings.database_name)
    return _client


def get_db() -> Database:
    return get_client()[settings.database_name]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB connection closed")


def ensure_indexes(db: Database) -> None:
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["favorites"].create_index([("userId", ASCENDING), ("hotelId", ASCENDING)], unique=True)
    db["reviews"].create_index([("userId", ASCENDING), ("hotelId", ASCENDING)], unique=True)
    db["bookings"].create_index([("userId", ASCENDING)])
    db["bookings"].create_index([("hotelId", ASCENDING)])
    db["bookings"].create_index(
        [("paymentIntentId", ASCENDING)],
        unique=True,
        partialFilterExpression={"paymentIntentId": {"$type": "string"}},
    )
    db["hotels"].create_index([("userId", ASCENDING)])


def object_id(value: str, message: str = "Not found") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(message)


def to_document(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    return dict(data)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = to_document(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    if doc.get("_id") is not None:
        doc["_id"] = str(doc["_id"])
    return doc
