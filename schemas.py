"""
Database Schemas for the Hotel Booking API

Each stored model maps to a MongoDB collection (User -> "users",
Hotel -> "hotels", ...). Attributes are snake_case in Python and are stored
and served under their camelCase aliases (total_bookings -> "totalBookings").
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    HOTEL_OWNER = "hotel_owner"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PaymentIntentStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# Collections

class User(CamelModel):
    email: str = Field(..., description="Unique login email")
    password: str = Field(..., description="bcrypt hash of the password")
    first_name: str
    last_name: str
    role: Role = Role.USER
    total_bookings: int = 0
    total_spent: float = 0


class HotelContact(CamelModel):
    phone: str = ""
    email: str = ""
    website: str = ""


class HotelPolicies(CamelModel):
    check_in_time: str = ""
    check_out_time: str = ""
    cancellation_policy: str = ""
    pet_policy: str = ""
    smoking_policy: str = ""


class Hotel(CamelModel):
    user_id: str = Field(..., description="Owning user id")
    name: str
    city: str
    country: str
    description: str
    type: List[str] = Field(..., min_length=1)
    adult_count: int = Field(1, ge=0)
    child_count: int = Field(0, ge=0)
    facilities: List[str] = Field(default_factory=list)
    price_per_night: float = Field(..., ge=0)
    star_rating: int = Field(..., ge=1, le=5)
    image_urls: List[str] = Field(default_factory=list)
    contact: HotelContact = Field(default_factory=HotelContact)
    policies: HotelPolicies = Field(default_factory=HotelPolicies)
    last_updated: Optional[datetime] = None
    total_bookings: int = 0
    total_revenue: float = 0
    average_rating: float = 0
    review_count: int = 0
    is_active: bool = True
    is_featured: bool = False


class Booking(CamelModel):
    user_id: str
    hotel_id: str
    first_name: str
    last_name: str
    email: str
    adult_count: int = Field(1, ge=1)
    child_count: int = Field(0, ge=0)
    check_in: datetime
    check_out: datetime
    total_cost: float = Field(..., ge=0)
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None


class Review(CamelModel):
    user_id: str
    hotel_id: str
    booking_id: str = Field(..., description="Booking that authorizes this review")
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    categories: Dict[str, int] = Field(default_factory=dict)
    is_verified: bool = False


class Favorite(CamelModel):
    user_id: str
    hotel_id: str


# Request payloads

class RegisterPayload(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role = Role.USER

    @field_validator("role")
    @classmethod
    def no_self_service_admin(cls, value: Role) -> Role:
        if value == Role.ADMIN:
            raise ValueError("admin accounts cannot be self-registered")
        return value


class LoginPayload(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class PaymentIntentRequest(CamelModel):
    number_of_nights: int = Field(..., ge=1)


def _parse_iso_datetime(value):
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class BookingConfirmation(CamelModel):
    payment_intent_id: str = Field(..., min_length=1)
    total_cost: float = Field(..., ge=0)
    check_in: datetime
    check_out: datetime
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    adult_count: int = Field(1, ge=1)
    child_count: int = Field(0, ge=0)
    number_of_nights: Optional[int] = None

    @field_validator("check_in", "check_out", mode="before")
    @classmethod
    def parse_dates(cls, value):
        return _parse_iso_datetime(value)


class BookingStatusUpdate(CamelModel):
    status: BookingStatus
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = Field(None, ge=0)


class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus
    payment_method: Optional[str] = None


class ReviewPayload(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    categories: Dict[str, int] = Field(default_factory=dict)
