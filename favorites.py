from typing import Any, Dict, List

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from bookings import get_hotel
from database import create_document, serialize_doc
from errors import Conflict, NotFound
from schemas import Favorite


def add_favorite(db: Database, user_id: str, hotel_id: str) -> Dict[str, Any]:
    get_hotel(db, hotel_id)
    try:
        favorite_id = create_document(db, "favorites", Favorite(user_id=user_id, hotel_id=hotel_id))
    except DuplicateKeyError:
        raise Conflict("Already in favorites")
    return serialize_doc(db["favorites"].find_one({"_id": ObjectId(favorite_id)}))


def list_favorites(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return [serialize_doc(f) for f in db["favorites"].find({"userId": user_id}).sort("createdAt", DESCENDING)]


def remove_favorite(db: Database, user_id: str, hotel_id: str) -> None:
    if not db["favorites"].find_one_and_delete({"userId": user_id, "hotelId": hotel_id}):
        raise NotFound("Favorite not found")
