"""
Booking and payment flow.

A booking is confirmed in two requests. The first creates a payment intent
with the processor for pricePerNight x nights, tagged with the hotel and user
ids. The second checks that intent (same hotel, same user, succeeded, same
amount) and writes a confirmed, paid Booking.

Hotel and user aggregates (totalBookings, totalRevenue / totalSpent) are
recomputed from the bookings collection after every write, so a failure
between the booking write and the aggregate update is repaired by the next
booking write for that hotel or user.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, object_id, serialize_doc, utcnow
from errors import Conflict, Forbidden, NotFound, UpstreamFailure, ValidationError
from payments import PaymentGateway, to_minor_units
from schemas import (
    Booking,
    BookingConfirmation,
    BookingStatus,
    BookingStatusUpdate,
    PaymentIntentStatus,
    PaymentStatus,
    PaymentStatusUpdate,
    Role,
)
from security import AuthContext

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REFUNDED},
    BookingStatus.CANCELLED: {BookingStatus.REFUNDED},
    BookingStatus.COMPLETED: {BookingStatus.REFUNDED},
    BookingStatus.REFUNDED: set(),
}


def count_nights(check_in: datetime, check_out: datetime) -> int:
    return (check_out.date() - check_in.date()).days


def validate_stay(check_in: datetime, check_out: datetime, number_of_nights: Optional[int] = None) -> int:
    nights = count_nights(check_in, check_out)
    if nights < 1:
        raise ValidationError("Booking must be at least 1 night (checkOut must be after checkIn)")
    if number_of_nights is not None and number_of_nights != nights:
        raise ValidationError("numberOfNights mismatch")
    return nights


def get_hotel(db: Database, hotel_id: str) -> Dict[str, Any]:
    hotel = db["hotels"].find_one({"_id": object_id(hotel_id, "Hotel not found")})
    if not hotel:
        raise NotFound("Hotel not found")
    return hotel


def get_booking(db: Database, booking_id: str) -> Dict[str, Any]:
    booking = db["bookings"].find_one({"_id": object_id(booking_id, "Booking not found")})
    if not booking:
        raise NotFound("Booking not found")
    return booking


# Aggregates

def _totals(db: Database, field: str, value: str) -> Tuple[int, float]:
    rows = list(
        db["bookings"].aggregate(
            [
                {"$match": {field: value}},
                {"$group": {"_id": None, "count": {"$sum": 1}, "total": {"$sum": "$totalCost"}}},
            ]
        )
    )
    if not rows:
        return 0, 0
    return rows[0]["count"], rows[0]["total"]


def refresh_booking_totals(db: Database, hotel_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if hotel_id and ObjectId.is_valid(hotel_id):
        count, revenue = _totals(db, "hotelId", hotel_id)
        db["hotels"].update_one(
            {"_id": ObjectId(hotel_id)},
            {"$set": {"totalBookings": count, "totalRevenue": revenue}},
        )
    if user_id and ObjectId.is_valid(user_id):
        count, spent = _totals(db, "userId", user_id)
        db["users"].update_one(
            {"_id": ObjectId(user_id)},
            {"$set": {"totalBookings": count, "totalSpent": spent}},
        )


# Payment flow

def create_payment_intent(
    db: Database, gateway: PaymentGateway, hotel_id: str, auth: AuthContext, number_of_nights: int
) -> Dict[str, Any]:
    hotel = get_hotel(db, hotel_id)
    total_cost = hotel["pricePerNight"] * number_of_nights
    intent = gateway.create_intent(total_cost, {"hotelId": hotel_id, "userId": auth.user_id})
    if not intent.client_secret:
        raise UpstreamFailure("Error creating payment intent")
    return {
        "paymentIntentId": intent.id,
        "clientSecret": intent.client_secret,
        "totalCost": total_cost,
    }


def confirm_booking(
    db: Database,
    gateway: PaymentGateway,
    hotel_id: str,
    auth: AuthContext,
    payload: BookingConfirmation,
) -> Dict[str, Any]:
    nights = validate_stay(payload.check_in, payload.check_out, payload.number_of_nights)
    hotel = get_hotel(db, hotel_id)

    intent = gateway.retrieve_intent(payload.payment_intent_id)
    if intent is None:
        raise ValidationError("payment intent not found")
    if intent.metadata.get("hotelId") != hotel_id or intent.metadata.get("userId") != auth.user_id:
        logger.warning("Payment intent %s does not belong to hotel %s / user %s", intent.id, hotel_id, auth.user_id)
        raise ValidationError("payment intent mismatch")
    if intent.state is not PaymentIntentStatus.SUCCEEDED:
        raise ValidationError(f"payment intent not succeeded. Status: {intent.status}")

    expected_cost = hotel["pricePerNight"] * nights
    if not math.isclose(payload.total_cost, expected_cost, abs_tol=0.005):
        raise ValidationError("totalCost does not match pricePerNight x nights")
    if intent.amount != to_minor_units(payload.total_cost):
        raise ValidationError("payment intent amount mismatch")
    if db["bookings"].find_one({"paymentIntentId": intent.id}):
        raise Conflict("payment intent already used")

    booking = Booking(
        user_id=auth.user_id,
        hotel_id=hotel_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        adult_count=payload.adult_count,
        child_count=payload.child_count,
        check_in=payload.check_in,
        check_out=payload.check_out,
        total_cost=payload.total_cost,
        status=BookingStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID,
        payment_intent_id=intent.id,
        payment_method="card",
    )
    try:
        booking_id = create_document(db, "bookings", booking)
    except DuplicateKeyError:
        raise Conflict("payment intent already used")
    logger.info("Booking %s confirmed for hotel %s (%s nights, %.2f)", booking_id, hotel_id, nights, payload.total_cost)
    refresh_booking_totals(db, hotel_id=hotel_id, user_id=auth.user_id)
    return serialize_doc(db["bookings"].find_one({"_id": ObjectId(booking_id)}))


def delete_booking(db: Database, booking_id: str) -> None:
    booking = db["bookings"].find_one_and_delete({"_id": object_id(booking_id, "Booking not found")})
    if not booking:
        raise NotFound("Booking not found")
    logger.info("Booking %s deleted", booking_id)
    refresh_booking_totals(db, hotel_id=booking.get("hotelId"), user_id=booking.get("userId"))


# Status management

def _owns_hotel(db: Database, hotel_id: Optional[str], user_id: str) -> bool:
    if not hotel_id or not ObjectId.is_valid(hotel_id):
        return False
    return db["hotels"].count_documents({"_id": ObjectId(hotel_id), "userId": user_id}) > 0


def can_view_booking(db: Database, booking: Dict[str, Any], auth: AuthContext) -> bool:
    if auth.role == Role.ADMIN or booking.get("userId") == auth.user_id:
        return True
    return auth.role == Role.HOTEL_OWNER and _owns_hotel(db, booking.get("hotelId"), auth.user_id)


def update_booking_status(
    db: Database, booking_id: str, auth: AuthContext, update: BookingStatusUpdate
) -> Dict[str, Any]:
    booking = get_booking(db, booking_id)
    new_status = BookingStatus(update.status)

    if auth.role == Role.ADMIN:
        pass
    elif auth.role == Role.HOTEL_OWNER and _owns_hotel(db, booking.get("hotelId"), auth.user_id):
        pass
    elif booking.get("userId") == auth.user_id:
        if new_status != BookingStatus.CANCELLED:
            raise Forbidden("Guests may only cancel their bookings")
    else:
        raise Forbidden("Access denied")

    current = BookingStatus(booking.get("status", BookingStatus.PENDING.value))
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change booking status from {current.value} to {new_status.value}")

    update_data: Dict[str, Any] = {"status": new_status.value, "updatedAt": utcnow()}
    if new_status == BookingStatus.CANCELLED and update.cancellation_reason:
        update_data["cancellationReason"] = update.cancellation_reason
    if new_status == BookingStatus.REFUNDED:
        update_data["refundAmount"] = update.refund_amount or 0

    updated = db["bookings"].find_one_and_update(
        {"_id": booking["_id"]}, {"$set": update_data}, return_document=ReturnDocument.AFTER
    )
    logger.info("Booking %s status %s -> %s", booking_id, current.value, new_status.value)
    return serialize_doc(updated)


def update_payment_status(
    db: Database, booking_id: str, auth: AuthContext, update: PaymentStatusUpdate
) -> Dict[str, Any]:
    booking = get_booking(db, booking_id)
    if auth.role != Role.ADMIN and not _owns_hotel(db, booking.get("hotelId"), auth.user_id):
        raise Forbidden("Access denied")

    update_data: Dict[str, Any] = {"paymentStatus": PaymentStatus(update.payment_status).value, "updatedAt": utcnow()}
    if update.payment_method:
        update_data["paymentMethod"] = update.payment_method
    updated = db["bookings"].find_one_and_update(
        {"_id": booking["_id"]}, {"$set": update_data}, return_document=ReturnDocument.AFTER
    )
    return serialize_doc(updated)


# Listings

def _hotels_by_id(db: Database, hotel_ids, projection=None) -> Dict[str, Dict[str, Any]]:
    ids = [ObjectId(h) for h in set(hotel_ids) if h and ObjectId.is_valid(h)]
    return {str(h["_id"]): h for h in db["hotels"].find({"_id": {"$in": ids}}, projection)}


HOTEL_SUMMARY = {"name": 1, "city": 1, "country": 1, "imageUrls": 1}


def booking_detail(db: Database, booking: Dict[str, Any]) -> Dict[str, Any]:
    item = serialize_doc(booking)
    hotel = _hotels_by_id(db, [booking.get("hotelId")], HOTEL_SUMMARY).get(booking.get("hotelId"))
    item["hotel"] = serialize_doc(hotel) if hotel else None
    return item


def list_all_bookings(db: Database) -> List[Dict[str, Any]]:
    bookings = list(db["bookings"].find().sort("createdAt", DESCENDING))
    hotels = _hotels_by_id(db, [b.get("hotelId") for b in bookings], {"name": 1, "city": 1, "country": 1})
    results = []
    for booking in bookings:
        item = serialize_doc(booking)
        hotel = hotels.get(booking.get("hotelId"))
        item["hotel"] = serialize_doc(hotel) if hotel else None
        results.append(item)
    return results


def list_hotel_bookings(db: Database, hotel_id: str, auth: AuthContext) -> List[Dict[str, Any]]:
    hotel = get_hotel(db, hotel_id)
    if hotel.get("userId") != auth.user_id:
        raise Forbidden("Access denied")
    bookings = list(db["bookings"].find({"hotelId": hotel_id}).sort("createdAt", DESCENDING))
    user_ids = [ObjectId(b["userId"]) for b in bookings if ObjectId.is_valid(b.get("userId", ""))]
    users = {
        str(u["_id"]): u
        for u in db["users"].find({"_id": {"$in": user_ids}}, {"firstName": 1, "lastName": 1, "email": 1})
    }
    results = []
    for booking in bookings:
        item = serialize_doc(booking)
        user = users.get(booking.get("userId"))
        item["user"] = serialize_doc(user) if user else None
        results.append(item)
    return results


def list_user_bookings(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Booking history grouped as hotel documents carrying their booking."""
    bookings = list(db["bookings"].find({"userId": user_id}).sort("createdAt", DESCENDING))
    hotels = _hotels_by_id(db, [b.get("hotelId") for b in bookings])
    results = []
    for booking in bookings:
        hotel = hotels.get(booking.get("hotelId"))
        if not hotel:
            continue
        item = serialize_doc(hotel)
        item["bookings"] = [serialize_doc(booking)]
        results.append(item)
    return results
