"""
Admin dashboard aggregates. Read-only.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import utcnow
from schemas import BookingStatus, PaymentStatus

TOP_HOTELS = 5
ACTIVE_STATUSES = [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]
PAID = {"paymentStatus": PaymentStatus.PAID.value}


def months_back(now: datetime, count: int = 12) -> datetime:
    """First day of the month `count - 1` months before `now`."""
    month_index = now.year * 12 + (now.month - 1) - (count - 1)
    return datetime(month_index // 12, month_index % 12 + 1, 1)


def month_label(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def _sum(db: Database, collection: str, match: Dict[str, Any], expression: Dict[str, Any]) -> Optional[float]:
    rows = list(db[collection].aggregate([{"$match": match}, {"$group": {"_id": None, "value": expression}}]))
    return rows[0]["value"] if rows else None


def _monthly(db: Database, match: Dict[str, Any], expression: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = db["bookings"].aggregate(
        [
            {"$match": match},
            {
                "$group": {
                    "_id": {"y": {"$year": "$createdAt"}, "m": {"$month": "$createdAt"}},
                    "value": expression,
                }
            },
            {"$sort": {"_id.y": 1, "_id.m": 1}},
        ]
    )
    return [{"month": month_label(r["_id"]["y"], r["_id"]["m"]), "value": r["value"]} for r in rows]


def _top_hotels(db: Database, match: Dict[str, Any], sort_field: str) -> List[Dict[str, Any]]:
    rows = list(
        db["bookings"].aggregate(
            [
                {"$match": match},
                {"$group": {"_id": "$hotelId", "revenue": {"$sum": "$totalCost"}, "bookings": {"$sum": 1}}},
                {"$sort": {sort_field: -1}},
                {"$limit": TOP_HOTELS},
            ]
        )
    )
    ids = [ObjectId(r["_id"]) for r in rows if r["_id"] and ObjectId.is_valid(r["_id"])]
    hotels = {str(h["_id"]): h for h in db["hotels"].find({"_id": {"$in": ids}}, {"name": 1, "city": 1})}
    top = []
    for row in rows:
        hotel = hotels.get(row["_id"], {})
        top.append(
            {
                "hotelId": row["_id"],
                "name": hotel.get("name"),
                "city": hotel.get("city"),
                "revenue": row["revenue"],
                "bookings": row["bookings"],
            }
        )
    return top


def build_dashboard(db: Database, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    since = months_back(now)

    active_bookings = db["bookings"].count_documents(
        {"checkOut": {"$gte": now}, "status": {"$in": ACTIVE_STATUSES}}
    )
    total_revenue = _sum(db, "bookings", PAID, {"$sum": "$totalCost"}) or 0
    avg_rating = _sum(db, "hotels", {"averageRating": {"$gt": 0}}, {"$avg": "$averageRating"}) or 0

    return {
        "kpis": {
            "totalUsers": db["users"].count_documents({}),
            "totalHotels": db["hotels"].count_documents({}),
            "activeBookings": active_bookings,
            "totalRevenue": total_revenue,
            "avgHotelRating": avg_rating,
            "totalFavorites": db["favorites"].count_documents({}),
        },
        "charts": {
            "bookingsByMonth": _monthly(db, {"createdAt": {"$gte": since}}, {"$sum": 1}),
            "revenueByMonth": _monthly(db, dict(PAID, createdAt={"$gte": since}), {"$sum": "$totalCost"}),
            "topHotelsByRevenue": _top_hotels(db, PAID, "revenue"),
            "topHotelsByBookings": _top_hotels(db, {}, "bookings"),
        },
        "timestamp": now.isoformat() + "Z",
    }
