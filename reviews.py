import logging
from typing import Any, Dict, List

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from bookings import get_hotel
from database import create_document, serialize_doc
from errors import Conflict, Forbidden, NotFound
from schemas import BookingStatus, PaymentStatus, Review, ReviewPayload
from security import AuthContext

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = [BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value]


def refresh_review_stats(db: Database, hotel_id: str) -> None:
    rows = list(
        db["reviews"].aggregate(
            [
                {"$match": {"hotelId": hotel_id}},
                {"$group": {"_id": None, "avgRating": {"$avg": "$rating"}, "count": {"$sum": 1}}},
            ]
        )
    )
    stats = rows[0] if rows else {"avgRating": 0, "count": 0}
    db["hotels"].update_one(
        {"_id": ObjectId(hotel_id)},
        {"$set": {"averageRating": stats["avgRating"] or 0, "reviewCount": stats["count"]}},
    )


def create_review(db: Database, hotel_id: str, auth: AuthContext, payload: ReviewPayload) -> Dict[str, Any]:
    get_hotel(db, hotel_id)

    booking = db["bookings"].find_one(
        {
            "userId": auth.user_id,
            "hotelId": hotel_id,
            "paymentStatus": PaymentStatus.PAID.value,
            "status": {"$in": REVIEWABLE_STATUSES},
        }
    )
    if not booking:
        raise Forbidden("You can only review hotels you have stayed in")

    if db["reviews"].find_one({"userId": auth.user_id, "hotelId": hotel_id}):
        raise Conflict("You already reviewed this hotel")

    review = Review(
        user_id=auth.user_id,
        hotel_id=hotel_id,
        booking_id=str(booking["_id"]),
        rating=payload.rating,
        comment=payload.comment,
        categories=payload.categories,
        is_verified=True,
    )
    try:
        review_id = create_document(db, "reviews", review)
    except DuplicateKeyError:
        raise Conflict("You already reviewed this hotel")

    refresh_review_stats(db, hotel_id)
    logger.info("Review %s added for hotel %s", review_id, hotel_id)
    return serialize_doc(db["reviews"].find_one({"_id": ObjectId(review_id)}))


def list_reviews(db: Database, hotel_id: str) -> List[Dict[str, Any]]:
    reviews = [serialize_doc(r) for r in db["reviews"].find({"hotelId": hotel_id}).sort("createdAt", DESCENDING)]
    if not reviews:
        raise NotFound("No reviews found for this hotel")
    return reviews
