import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

import jwt
from bson import ObjectId
from fastapi import Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import analytics
import bookings
import favorites
import hotels
import reviews
from database import close_client, create_document, ensure_indexes, get_db, serialize_doc
from errors import ApiError, Conflict, InternalError, NotFound, Unauthorized, format_validation_errors
from payments import PaymentGateway, get_payment_gateway
from schemas import (
    BookingConfirmation,
    BookingStatusUpdate,
    LoginPayload,
    PaymentIntentRequest,
    PaymentStatusUpdate,
    RegisterPayload,
    ReviewPayload,
    Role,
    User,
)
from search import search_hotels
from security import (
    ACCESS_COOKIE,
    AUTH_COOKIES,
    REFRESH_COOKIE,
    AuthContext,
    clear_cookies,
    create_access_token,
    create_tokens,
    decode_refresh_token,
    get_auth_context,
    hash_password,
    require_role,
    set_access_cookie,
    set_auth_cookies,
    verify_password,
)
from settings import configure_logging, settings
from storage import ImageStore, get_image_store

logger = logging.getLogger(__name__)

LIST_PARAMS = ("facilities", "types", "stars")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings.validate()
    try:
        ensure_indexes(get_db())
    except PyMongoError as exc:
        logger.error("MongoDB index setup failed: %s", exc)
    logger.info("Hotel Booking API starting (%s)", settings.app_env)
    yield
    close_client()


app = FastAPI(title="Hotel Booking API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cookie", "X-Requested-With"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    # Unhandled errors re-raise out of call_next and become a 500.
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.url.path, status_code, elapsed)


# Error handling

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    response = JSONResponse(status_code=exc.status_code, content=exc.body())
    if isinstance(exc, Unauthorized):
        clear_cookies(response, exc.clear_cookies)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Validation failed", "errors": format_validation_errors(exc.errors())},
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return await api_error_handler(request, Conflict("Duplicate record"))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    body = error.body()
    if not settings.is_production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=error.status_code, content=body)


# Health

@app.get("/")
def root():
    return {"name": "Hotel Booking API", "status": "ok"}


@app.get("/api/health")
def health(db: Database = Depends(get_db)):
    response = {"backend": "running", "database": "unavailable", "collections": []}
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "connected"
    except PyMongoError as exc:
        response["database"] = f"error: {str(exc)[:80]}"
    return response


# Users & auth

def _public_user(user: dict) -> dict:
    user = serialize_doc(user)
    user.pop("password", None)
    return user


@app.post("/api/users/register")
def register(payload: RegisterPayload, response: Response, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["users"].find_one({"email": email}):
        raise Conflict("User already exists")
    user = User(
        email=email,
        password=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
    )
    try:
        user_id = create_document(db, "users", user)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    access_token, refresh_token = create_tokens(user_id, user.role)
    set_auth_cookies(response, access_token, refresh_token)
    logger.info("User %s registered as %s", user_id, user.role)
    return {"message": "User registered OK", "userId": user_id}


@app.get("/api/users/me")
def me(auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    user = db["users"].find_one({"_id": ObjectId(auth.user_id)}) if ObjectId.is_valid(auth.user_id) else None
    if not user:
        raise NotFound("User not found")
    return _public_user(user)


@app.post("/api/auth/login")
def login(payload: LoginPayload, response: Response, db: Database = Depends(get_db)):
    user = db["users"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise Unauthorized("Invalid email or password")
    user_id = str(user["_id"])
    access_token, refresh_token = create_tokens(user_id, user.get("role", Role.USER.value))
    set_auth_cookies(response, access_token, refresh_token)
    return {
        "userId": user_id,
        "message": "Login successful",
        "user": {
            "id": user_id,
            "email": user["email"],
            "firstName": user.get("firstName"),
            "lastName": user.get("lastName"),
            "role": user.get("role"),
        },
    }


@app.post("/api/auth/refresh-token")
def refresh_token(request: Request, response: Response, db: Database = Depends(get_db)):
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise Unauthorized("Access Denied. No refresh token provided.", clear_cookies=AUTH_COOKIES)
    try:
        user_id = decode_refresh_token(token)
    except (jwt.PyJWTError, ValueError):
        raise Unauthorized("Invalid or expired refresh token. Please login again.", clear_cookies=AUTH_COOKIES)
    user = db["users"].find_one({"_id": ObjectId(user_id)}, {"role": 1}) if ObjectId.is_valid(user_id) else None
    if not user:
        raise Unauthorized("Invalid refresh token or user not found.", clear_cookies=AUTH_COOKIES)
    set_access_cookie(response, create_access_token(user_id, user.get("role", Role.USER.value)))
    return {"message": "Token refreshed successfully", "userId": user_id}


@app.get("/api/auth/validate-token")
def validate_token(auth: AuthContext = Depends(get_auth_context)):
    return {"userId": auth.user_id, "role": auth.role.value if auth.role else None}


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_cookies(response)
    return {"message": "Logout successful"}


# Hotels (public)

@app.get("/api/hotels/search")
def search(request: Request, db: Database = Depends(get_db)):
    query = request.query_params
    params = {key: query.getlist(key) if key in LIST_PARAMS else query.get(key) for key in query.keys()}
    return search_hotels(db, params)


@app.get("/api/hotels")
def list_hotels(db: Database = Depends(get_db)):
    return hotels.list_hotels(db)


@app.get("/api/hotels/{hotel_id}")
def get_hotel(hotel_id: str, db: Database = Depends(get_db)):
    return hotels.get_public_hotel(db, hotel_id)


# Booking flow

@app.post("/api/hotels/{hotel_id}/bookings/payment-intent")
def create_payment_intent(
    hotel_id: str,
    payload: PaymentIntentRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return bookings.create_payment_intent(db, gateway, hotel_id, auth, payload.number_of_nights)


@app.post("/api/hotels/{hotel_id}/bookings")
def confirm_booking(
    hotel_id: str,
    payload: BookingConfirmation,
    auth: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return bookings.confirm_booking(db, gateway, hotel_id, auth, payload)


@app.get("/api/my-bookings")
def my_bookings(auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    return bookings.list_user_bookings(db, auth.user_id)


# Hotel owner listings

@app.post("/api/my-hotels", status_code=201)
def create_my_hotel(
    form: dict = Depends(hotels.hotel_form),
    image_files: Optional[List[UploadFile]] = File(None, alias="imageFiles"),
    auth: AuthContext = Depends(require_role(Role.HOTEL_OWNER)),
    db: Database = Depends(get_db),
    images: ImageStore = Depends(get_image_store),
):
    return hotels.create_hotel(db, auth, form, image_files or [], images)


@app.get("/api/my-hotels")
def list_my_hotels(auth: AuthContext = Depends(require_role(Role.HOTEL_OWNER)), db: Database = Depends(get_db)):
    return hotels.list_owner_hotels(db, auth)


@app.get("/api/my-hotels/{hotel_id}")
def get_my_hotel(
    hotel_id: str, auth: AuthContext = Depends(require_role(Role.HOTEL_OWNER)), db: Database = Depends(get_db)
):
    return hotels.get_owner_hotel(db, hotel_id, auth)


@app.put("/api/my-hotels/{hotel_id}")
def update_my_hotel(
    hotel_id: str,
    form: dict = Depends(hotels.hotel_form),
    image_files: Optional[List[UploadFile]] = File(None, alias="imageFiles"),
    auth: AuthContext = Depends(require_role(Role.HOTEL_OWNER)),
    db: Database = Depends(get_db),
    images: ImageStore = Depends(get_image_store),
):
    return hotels.update_hotel(db, hotel_id, auth, form, image_files or [], images)


# Booking management

@app.get("/api/bookings")
def list_bookings(auth: AuthContext = Depends(require_role(Role.ADMIN)), db: Database = Depends(get_db)):
    return bookings.list_all_bookings(db)


@app.get("/api/bookings/hotel/{hotel_id}")
def list_hotel_bookings(
    hotel_id: str, auth: AuthContext = Depends(require_role(Role.HOTEL_OWNER)), db: Database = Depends(get_db)
):
    return bookings.list_hotel_bookings(db, hotel_id, auth)


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    booking = bookings.get_booking(db, booking_id)
    if not bookings.can_view_booking(db, booking, auth):
        raise NotFound("Booking not found")
    return bookings.booking_detail(db, booking)


@app.patch("/api/bookings/{booking_id}/status")
def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdate,
    auth: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    return bookings.update_booking_status(db, booking_id, auth, payload)


@app.patch("/api/bookings/{booking_id}/payment")
def update_payment_status(
    booking_id: str,
    payload: PaymentStatusUpdate,
    auth: AuthContext = Depends(require_role(Role.ADMIN, Role.HOTEL_OWNER)),
    db: Database = Depends(get_db),
):
    return bookings.update_payment_status(db, booking_id, auth, payload)


@app.delete("/api/bookings/{booking_id}")
def delete_booking(booking_id: str, auth: AuthContext = Depends(require_role(Role.ADMIN)), db: Database = Depends(get_db)):
    bookings.delete_booking(db, booking_id)
    return {"message": "Booking deleted successfully"}


# Favorites

@app.get("/api/favorites")
def list_favorites(auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    return favorites.list_favorites(db, auth.user_id)


@app.post("/api/favorites/{hotel_id}", status_code=201)
def add_favorite(hotel_id: str, auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    return favorites.add_favorite(db, auth.user_id, hotel_id)


@app.delete("/api/favorites/{hotel_id}")
def remove_favorite(hotel_id: str, auth: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    favorites.remove_favorite(db, auth.user_id, hotel_id)
    return {"message": "Removed from favorites"}


# Reviews

@app.post("/api/reviews/{hotel_id}", status_code=201)
def add_review(
    hotel_id: str,
    payload: ReviewPayload,
    auth: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    return reviews.create_review(db, hotel_id, auth, payload)


@app.get("/api/reviews/{hotel_id}")
def list_reviews(hotel_id: str, db: Database = Depends(get_db)):
    return reviews.list_reviews(db, hotel_id)


# Admin

@app.get("/api/admin/dashboard")
def admin_dashboard(auth: AuthContext = Depends(require_role(Role.ADMIN)), db: Database = Depends(get_db)):
    return analytics.build_dashboard(db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
