"""
Hotel listings: public reads and owner-scoped management.

Owners only ever see their own hotels; a hotel that exists but belongs to
someone else is reported as not found.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from fastapi import Form
from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, object_id, serialize_doc, utcnow
from errors import NotFound, ValidationError, format_validation_errors
from schemas import Hotel, HotelContact, HotelPolicies
from security import AuthContext
from storage import ImageStore

logger = logging.getLogger(__name__)

# Fields an owner may set. Aggregates and ownership are never taken from input.
EDITABLE_FIELDS = (
    "name",
    "city",
    "country",
    "description",
    "type",
    "adultCount",
    "childCount",
    "facilities",
    "pricePerNight",
    "starRating",
    "contact",
    "policies",
)


def hotel_form(
    name: str = Form(...),
    city: str = Form(...),
    country: str = Form(...),
    description: str = Form(...),
    hotel_type: List[str] = Form(..., alias="type"),
    price_per_night: float = Form(..., alias="pricePerNight"),
    star_rating: int = Form(..., alias="starRating"),
    adult_count: int = Form(1, alias="adultCount"),
    child_count: int = Form(0, alias="childCount"),
    facilities: List[str] = Form(..., alias="facilities"),
    image_urls: Optional[List[str]] = Form(None, alias="imageUrls"),
    contact_phone: str = Form("", alias="contact.phone"),
    contact_email: str = Form("", alias="contact.email"),
    contact_website: str = Form("", alias="contact.website"),
    check_in_time: str = Form("", alias="policies.checkInTime"),
    check_out_time: str = Form("", alias="policies.checkOutTime"),
    cancellation_policy: str = Form("", alias="policies.cancellationPolicy"),
    pet_policy: str = Form("", alias="policies.petPolicy"),
    smoking_policy: str = Form("", alias="policies.smokingPolicy"),
) -> Dict[str, Any]:
    """Collect the multipart hotel form, folding dotted keys into nested records."""
    return {
        "name": name,
        "city": city,
        "country": country,
        "description": description,
        "type": hotel_type,
        "price_per_night": price_per_night,
        "star_rating": star_rating,
        "adult_count": adult_count,
        "child_count": child_count,
        "facilities": facilities,
        "image_urls": parse_image_urls(image_urls),
        "contact": HotelContact(phone=contact_phone, email=contact_email, website=contact_website),
        "policies": HotelPolicies(
            check_in_time=check_in_time,
            check_out_time=check_out_time,
            cancellation_policy=cancellation_policy,
            pet_policy=pet_policy,
            smoking_policy=smoking_policy,
        ),
    }


def parse_image_urls(value) -> List[str]:
    """Accept a list of urls, a single url, or a JSON-encoded list."""
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    urls: List[str] = []
    for item in value:
        item = (item or "").strip()
        if item.startswith("[") and item.endswith("]"):
            try:
                parsed = json.loads(item)
            except ValueError:
                continue
            if isinstance(parsed, list):
                urls.extend(u for u in parsed if isinstance(u, str) and u)
        elif item:
            urls.append(item)
    return urls


def _build_hotel(user_id: str, form: Dict[str, Any], image_urls: List[str]) -> Hotel:
    data = dict(form, image_urls=image_urls)
    try:
        return Hotel(user_id=user_id, last_updated=utcnow(), **data)
    except PydanticValidationError as exc:
        raise ValidationError("Validation failed", errors=format_validation_errors(exc.errors()))


def list_hotels(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(h) for h in db["hotels"].find().sort("lastUpdated", DESCENDING)]


def get_public_hotel(db: Database, hotel_id: str) -> Dict[str, Any]:
    hotel = db["hotels"].find_one({"_id": object_id(hotel_id, "Hotel not found")})
    if not hotel:
        raise NotFound("Hotel not found")
    return serialize_doc(hotel)


def list_owner_hotels(db: Database, auth: AuthContext) -> List[Dict[str, Any]]:
    return [serialize_doc(h) for h in db["hotels"].find({"userId": auth.user_id})]


def _owned_hotel(db: Database, hotel_id: str, auth: AuthContext) -> Dict[str, Any]:
    hotel = db["hotels"].find_one({"_id": object_id(hotel_id, "Hotel not found"), "userId": auth.user_id})
    if not hotel:
        raise NotFound("Hotel not found")
    return hotel


def get_owner_hotel(db: Database, hotel_id: str, auth: AuthContext) -> Dict[str, Any]:
    return serialize_doc(_owned_hotel(db, hotel_id, auth))


def create_hotel(
    db: Database, auth: AuthContext, form: Dict[str, Any], files: Sequence, images: ImageStore
) -> Dict[str, Any]:
    # Validate before uploading anything.
    _build_hotel(auth.user_id, form, [])
    image_urls = images.upload(files) if files else []
    hotel = _build_hotel(auth.user_id, form, image_urls)
    hotel_id = create_document(db, "hotels", hotel)
    logger.info("Hotel %s created by %s with %d images", hotel_id, auth.user_id, len(image_urls))
    return serialize_doc(db["hotels"].find_one({"_id": ObjectId(hotel_id)}))


def update_hotel(
    db: Database, hotel_id: str, auth: AuthContext, form: Dict[str, Any], files: Sequence, images: ImageStore
) -> Dict[str, Any]:
    existing = _owned_hotel(db, hotel_id, auth)
    kept = form["image_urls"]
    _build_hotel(auth.user_id, form, kept)

    new_urls = images.upload(files) if files else []
    hotel = _build_hotel(auth.user_id, form, kept + new_urls)
    doc = hotel.model_dump(by_alias=True)
    update = {field: doc[field] for field in EDITABLE_FIELDS}
    update.update(imageUrls=doc["imageUrls"], lastUpdated=doc["lastUpdated"], updatedAt=utcnow())

    updated = db["hotels"].find_one_and_update(
        {"_id": existing["_id"], "userId": auth.user_id},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("Hotel not found")

    for url in existing.get("imageUrls", []):
        if url not in kept:
            images.delete(url)
    return serialize_doc(updated)
