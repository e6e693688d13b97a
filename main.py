import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import admin
import bookings
import catalog
import database
import reviews
import security
import settings
from errors import ApiError, Forbidden, Unauthorized
from schemas import (
    Address,
    Cuisine,
    DietaryInfo,
    DishCategory,
    EventType,
    Ingredient,
    PaymentMethod,
    ServiceArea,
    ServiceLocation,
    Specialization,
)
from security import Principal

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("chefbook")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.store.ensure_indexes()
    logger.info("Store ready (%s)", database.store.name)
    yield
    await database.store.close()


# App and CORS
app = FastAPI(title="Chef Marketplace API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWLIST or ["*"],
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS and bool(settings.CORS_ALLOWLIST),
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/users/login", auto_error=False)


# Helpers

def respond(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    body = {"status_code": status_code, "data": data, "message": message, "success": True}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, custom_encoder={ObjectId: str}))


def error_response(status_code: int, message: str, errors: Optional[List[str]] = None) -> JSONResponse:
    body = {"status_code": status_code, "data": None, "message": message, "success": False, "errors": errors or []}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _log_failure(request: Request, status_code: int, exc: Exception) -> None:
    context = (request.headers.get("x-request-id"), request.method, request.url.path, status_code)
    if status_code >= 500:
        logger.error("request failed id=%s %s %s -> %s", *context, exc_info=exc)
    else:
        logger.warning("request failed id=%s %s %s -> %s: %s", *context, exc)


def parse_maybe_json(value: Any) -> Any:
    """Form-style clients send list and object fields as JSON strings."""
    if isinstance(value, str):
        if value.strip() == "":
            return None
        try:
            return json.loads(value)
        except ValueError:
            raise ValueError("must be valid JSON")
    return value


def get_store():
    return database.store


async def get_current_principal(token: Optional[str] = Depends(oauth2_scheme), store=Depends(get_store)) -> Principal:
    if not token:
        raise Unauthorized("Unauthorized request")
    payload = security.decode_token(token)
    account = await store.get("account", payload["sub"])
    if not account:
        raise Unauthorized("Invalid access token")
    return Principal(account_id=str(account["_id"]), role=account["role"])


def require_role(*roles: str):
    async def role_dep(principal: Principal = Depends(get_current_principal)):
        if principal.role not in roles:
            raise Forbidden(f"Access denied. {' or '.join(roles).title()} privileges required.")
        return principal
    return role_dep


# Error handlers
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    message = exc.message
    if exc.status_code >= 500 and settings.IS_PRODUCTION:
        message = "Internal Server Error"
    _log_failure(request, exc.status_code, exc)
    return error_response(exc.status_code, message, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    _log_failure(request, exc.status_code, exc)
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    _log_failure(request, 400, exc)
    return error_response(400, "Validation failed", messages)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    field = next(iter(key_pattern), "field")
    _log_failure(request, 409, exc)
    return error_response(409, f"{field} already exists")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    _log_failure(request, 500, exc)
    message = "Internal Server Error" if settings.IS_PRODUCTION else str(exc) or "Internal Server Error"
    return error_response(500, message)


# Request Models
class RegisterUserRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=40)
    password: str = Field(..., min_length=8, max_length=128)
    phone: str = Field(..., min_length=7, max_length=20)
    avatar: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class UpdateUserProfileRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = Field(None, min_length=7, max_length=20)
    address: Optional[Address] = None
    avatar: Optional[str] = None


class RegisterChefRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: str = Field(..., min_length=7, max_length=20)
    avatar: str = Field(..., min_length=1, description="Avatar URL returned by the upload service")
    cover_image: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    specialization: List[Specialization] = Field(default_factory=list)
    experience: int = Field(..., ge=0)
    price_per_hour: int = Field(..., ge=1)
    minimum_booking_hours: Optional[int] = Field(None, ge=1)
    service_locations: List[ServiceArea] = Field(default_factory=list)

    @field_validator("specialization", "service_locations", mode="before")
    @classmethod
    def parse_json_fields(cls, v):
        return parse_maybe_json(v)


class UpdateChefProfileRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = Field(None, min_length=7, max_length=20)
    bio: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = None
    cover_image: Optional[str] = None
    specialization: Optional[List[Specialization]] = None
    experience: Optional[int] = Field(None, ge=0)
    price_per_hour: Optional[int] = Field(None, ge=1)
    minimum_booking_hours: Optional[int] = Field(None, ge=1)
    service_locations: Optional[List[ServiceArea]] = None

    @field_validator("specialization", "service_locations", mode="before")
    @classmethod
    def parse_json_fields(cls, v):
        return parse_maybe_json(v)


class AddDishRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1, max_length=1000)
    category: DishCategory
    cuisine: Cuisine
    images: List[str] = Field(default_factory=list)
    preparation_time: int = Field(..., ge=0)
    cooking_time: int = Field(..., ge=0)
    servings: Optional[int] = Field(None, ge=1)
    price: int = Field(..., ge=0)
    ingredients: List[Ingredient] = Field(default_factory=list)
    dietary_info: Optional[DietaryInfo] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("images", "ingredients", "dietary_info", "tags", mode="before")
    @classmethod
    def parse_json_fields(cls, v):
        return parse_maybe_json(v)


class UpdateDishRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    category: Optional[DishCategory] = None
    cuisine: Optional[Cuisine] = None
    images: Optional[List[str]] = None
    preparation_time: Optional[int] = Field(None, ge=0)
    cooking_time: Optional[int] = Field(None, ge=0)
    servings: Optional[int] = Field(None, ge=1)
    price: Optional[int] = Field(None, ge=0)
    ingredients: Optional[List[Ingredient]] = None
    dietary_info: Optional[DietaryInfo] = None
    tags: Optional[List[str]] = None
    is_available: Optional[bool] = None

    @field_validator("images", "ingredients", "dietary_info", "tags", mode="before")
    @classmethod
    def parse_json_fields(cls, v):
        return parse_maybe_json(v)


class BookingDishRequest(BaseModel):
    dish_id: str
    quantity: int = Field(1, ge=1)


class CreateBookingRequest(BaseModel):
    chef_id: str
    dishes: List[BookingDishRequest] = Field(..., min_length=1)
    booking_date: date
    booking_time: str = Field(..., min_length=1)
    event_type: Optional[EventType] = None
    guest_count: int = Field(..., ge=1)
    service_location: ServiceLocation
    special_instructions: Optional[str] = Field(None, max_length=500)
    dietary_restrictions: List[str] = Field(default_factory=list)
    payment_method: Optional[PaymentMethod] = None

    @field_validator("dishes", "service_location", "dietary_restrictions", mode="before")
    @classmethod
    def parse_json_fields(cls, v):
        return parse_maybe_json(v)


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class UpdateBookingStatusRequest(BaseModel):
    status: str
    reason: Optional[str] = Field(None, max_length=500)


class AddReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    food_quality: Optional[int] = Field(None, ge=1, le=5)
    professionalism: Optional[int] = Field(None, ge=1, le=5)
    punctuality: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewResponseRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=1000)


# User Routes
@app.post("/api/v1/users/register")
async def register_user(payload: RegisterUserRequest, store=Depends(get_store)):
    data = await accounts.register_user(store, payload.model_dump())
    return respond(data, "User registered successfully", 201)


@app.post("/api/v1/users/login")
async def login_user(payload: LoginRequest, store=Depends(get_store)):
    data = await accounts.login(store, payload.email, payload.password, role="user")
    return respond(data, "User logged in successfully")


@app.post("/api/v1/users/refresh-token")
async def refresh_token(payload: RefreshTokenRequest, store=Depends(get_store)):
    data = await accounts.refresh_tokens(store, payload.refresh_token)
    return respond(data, "Access token refreshed")


@app.post("/api/v1/users/logout")
async def logout_user(principal=Depends(get_current_principal), store=Depends(get_store)):
    await accounts.logout(store, principal)
    return respond({}, "Logged out successfully")


@app.post("/api/v1/users/change-password")
async def change_password(
    payload: ChangePasswordRequest, principal=Depends(get_current_principal), store=Depends(get_store)
):
    await accounts.change_password(store, principal, payload.old_password, payload.new_password)
    return respond({}, "Password changed successfully")


@app.get("/api/v1/users/profile")
async def get_user_profile(principal=Depends(require_role("user")), store=Depends(get_store)):
    return respond(await accounts.get_account(store, principal), "User profile fetched successfully")


@app.patch("/api/v1/users/profile")
async def update_user_profile(
    payload: UpdateUserProfileRequest, principal=Depends(require_role("user")), store=Depends(get_store)
):
    data = await accounts.update_user_profile(store, principal, payload.model_dump(exclude_none=True))
    return respond(data, "Profile updated successfully")


@app.get("/api/v1/users/bookings")
async def get_user_bookings(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    principal=Depends(require_role("user")),
    store=Depends(get_store),
):
    data = await bookings.list_user_bookings(store, principal, status, page, limit)
    return respond(data, "Bookings fetched successfully")


@app.get("/api/v1/users/favorites")
async def get_favorite_chefs(principal=Depends(require_role("user")), store=Depends(get_store)):
    return respond(await accounts.list_favorite_chefs(store, principal), "Favorite chefs fetched")


@app.post("/api/v1/users/favorites/{chef_id}")
async def add_favorite_chef(chef_id: str, principal=Depends(require_role("user")), store=Depends(get_store)):
    await accounts.add_favorite_chef(store, principal, chef_id)
    return respond({}, "Chef added to favorites")


@app.delete("/api/v1/users/favorites/{chef_id}")
async def remove_favorite_chef(chef_id: str, principal=Depends(require_role("user")), store=Depends(get_store)):
    await accounts.remove_favorite_chef(store, principal, chef_id)
    return respond({}, "Chef removed from favorites")


# Chef Routes
@app.post("/api/v1/chefs/register")
async def register_chef(payload: RegisterChefRequest, store=Depends(get_store)):
    data = await accounts.register_chef(store, payload.model_dump())
    return respond(data, "Chef registered successfully", 201)


@app.post("/api/v1/chefs/login")
async def login_chef(payload: LoginRequest, store=Depends(get_store)):
    data = await accounts.login(store, payload.email, payload.password, role="chef")
    return respond(data, "Chef logged in successfully")


@app.get("/api/v1/chefs/profile")
async def get_chef_profile(principal=Depends(require_role("chef")), store=Depends(get_store)):
    return respond(await catalog.get_chef_profile(store, principal), "Chef profile fetched successfully")


@app.patch("/api/v1/chefs/profile")
async def update_chef_profile(
    payload: UpdateChefProfileRequest, principal=Depends(require_role("chef")), store=Depends(get_store)
):
    data = await catalog.update_chef_profile(store, principal, payload.model_dump(exclude_none=True))
    return respond(data, "Chef profile updated successfully")


@app.patch("/api/v1/chefs/availability")
async def toggle_availability(principal=Depends(require_role("chef")), store=Depends(get_store)):
    data = await catalog.toggle_availability(store, principal)
    return respond(data, f"Chef is now {'available' if data['is_available'] else 'unavailable'}")


@app.get("/api/v1/chefs/stats")
async def get_chef_stats(principal=Depends(require_role("chef")), store=Depends(get_store)):
    return respond(await catalog.chef_stats(store, principal), "Chef stats fetched successfully")


@app.post("/api/v1/chefs/dishes")
async def add_dish(payload: AddDishRequest, principal=Depends(require_role("chef")), store=Depends(get_store)):
    data = await catalog.add_dish(store, principal, payload.model_dump(exclude_none=True))
    return respond(data, "Dish added successfully", 201)


@app.get("/api/v1/chefs/dishes")
async def list_own_dishes(
    category: Optional[str] = None,
    is_available: Optional[bool] = None,
    principal=Depends(require_role("chef")),
    store=Depends(get_store),
):
    data = await catalog.list_own_dishes(store, principal, category, is_available)
    return respond(data, "Dishes fetched successfully")


@app.patch("/api/v1/chefs/dishes/{dish_id}")
async def update_dish(
    dish_id: str, payload: UpdateDishRequest, principal=Depends(require_role("chef")), store=Depends(get_store)
):
    data = await catalog.update_dish(store, principal, dish_id, payload.model_dump(exclude_none=True))
    return respond(data, "Dish updated successfully")


@app.delete("/api/v1/chefs/dishes/{dish_id}")
async def delete_dish(dish_id: str, principal=Depends(require_role("chef")), store=Depends(get_store)):
    await catalog.delete_dish(store, principal, dish_id)
    return respond({}, "Dish deleted successfully")


@app.get("/api/v1/chefs/bookings")
async def get_chef_bookings(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    principal=Depends(require_role("chef")),
    store=Depends(get_store),
):
    data = await bookings.list_chef_bookings(store, principal, status, page, limit)
    return respond(data, "Bookings fetched successfully")


@app.patch("/api/v1/chefs/bookings/{booking_id}/status")
async def update_booking_status(
    booking_id: str,
    payload: UpdateBookingStatusRequest,
    principal=Depends(require_role("chef")),
    store=Depends(get_store),
):
    data = await bookings.update_booking_status(store, principal, booking_id, payload.status, payload.reason)
    return respond(data, "Booking status updated successfully")


@app.post("/api/v1/chefs/reviews/{review_id}/response")
async def respond_to_review(
    review_id: str, payload: ReviewResponseRequest, principal=Depends(require_role("chef")), store=Depends(get_store)
):
    data = await reviews.respond_to_review(store, principal, review_id, payload.comment)
    return respond(data, "Response added successfully")


# Public Routes
@app.get("/api/v1/public/chefs")
async def list_chefs(
    city: Optional[str] = None,
    specialization: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    min_rating: Optional[float] = None,
    sort_by: str = Query("average_rating"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1),
    store=Depends(get_store),
):
    data = await catalog.list_chefs(
        store, city, specialization, min_price, max_price, min_rating, sort_by, order, page, limit
    )
    return respond(data, "Chefs fetched successfully")


@app.get("/api/v1/public/chefs/search")
async def search_chefs(
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1),
    store=Depends(get_store),
):
    return respond(await catalog.search_chefs(store, q, page, limit), "Search results fetched")


@app.get("/api/v1/public/chefs/{chef_id}")
async def get_chef(chef_id: str, store=Depends(get_store)):
    return respond(await catalog.get_chef(store, chef_id), "Chef details fetched successfully")


@app.get("/api/v1/public/chefs/{chef_id}/dishes")
async def get_chef_dishes(
    chef_id: str,
    category: Optional[str] = None,
    cuisine: Optional[str] = None,
    vegetarian: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    store=Depends(get_store),
):
    data = await catalog.list_chef_dishes(store, chef_id, category, cuisine, vegetarian, page, limit)
    return respond(data, "Chef dishes fetched successfully")


@app.get("/api/v1/public/dishes")
async def search_dishes(
    q: Optional[str] = None,
    category: Optional[str] = None,
    cuisine: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    vegetarian: bool = False,
    vegan: bool = False,
    spice_level: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    store=Depends(get_store),
):
    data = await catalog.search_dishes(
        store, q, category, cuisine, min_price, max_price, vegetarian, vegan, spice_level, page, limit
    )
    return respond(data, "Dishes fetched successfully")


@app.get("/api/v1/public/dishes/{dish_id}")
async def get_dish(dish_id: str, store=Depends(get_store)):
    return respond(await catalog.get_dish(store, dish_id), "Dish details fetched successfully")


# Booking Routes
@app.post("/api/v1/bookings")
async def create_booking(
    payload: CreateBookingRequest, principal=Depends(require_role("user")), store=Depends(get_store)
):
    data = await bookings.create_booking(store, principal, payload.model_dump())
    return respond(data, "Booking created successfully", 201)


@app.get("/api/v1/bookings/{booking_id}")
async def get_booking(booking_id: str, principal=Depends(get_current_principal), store=Depends(get_store)):
    return respond(await bookings.get_booking(store, principal, booking_id), "Booking fetched successfully")


@app.patch("/api/v1/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    payload: Optional[CancelBookingRequest] = None,
    principal=Depends(require_role("user", "admin")),
    store=Depends(get_store),
):
    reason = payload.reason if payload else None
    data = await bookings.cancel_booking(store, principal, booking_id, reason)
    return respond(data, "Booking cancelled successfully")


@app.post("/api/v1/bookings/{booking_id}/review")
async def add_review(
    booking_id: str, payload: AddReviewRequest, principal=Depends(require_role("user")), store=Depends(get_store)
):
    data = await reviews.add_review(store, principal, booking_id, payload.model_dump())
    return respond(data, "Review added successfully", 201)


# Admin Routes
@app.get("/api/v1/admin/dashboard")
async def admin_dashboard(principal=Depends(require_role("admin")), store=Depends(get_store)):
    return respond(await admin.dashboard(store), "Dashboard fetched")


@app.get("/api/v1/admin/chefs/pending")
async def admin_pending_chefs(principal=Depends(require_role("admin")), store=Depends(get_store)):
    return respond(await admin.list_pending_chefs(store), "Pending chefs fetched")


@app.patch("/api/v1/admin/chefs/{chef_id}/approve")
async def admin_approve_chef(chef_id: str, principal=Depends(require_role("admin")), store=Depends(get_store)):
    return respond(await admin.approve_chef(store, chef_id), "Chef approved successfully")


@app.patch("/api/v1/admin/chefs/{chef_id}/reject")
async def admin_reject_chef(chef_id: str, principal=Depends(require_role("admin")), store=Depends(get_store)):
    return respond(await admin.reject_chef(store, chef_id), "Chef rejected successfully")


@app.patch("/api/v1/admin/chefs/{chef_id}/suspend")
async def admin_suspend_chef(chef_id: str, principal=Depends(require_role("admin")), store=Depends(get_store)):
    return respond(await admin.suspend_chef(store, chef_id), "Chef suspended successfully")


@app.post("/api/v1/admin/login")
async def login_admin(payload: LoginRequest, store=Depends(get_store)):
    data = await accounts.login(store, payload.email, payload.password, role="admin")
    return respond(data, "Admin logged in successfully")


# Bootstrap route for first deploy
@app.post("/init/bootstrap")
async def bootstrap_admin(store=Depends(get_store)):
    """Create the first admin from ADMIN_EMAIL / ADMIN_PASSWORD if none exists."""
    return respond(await admin.bootstrap_admin(store), "Admin created", 201)


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Chef Marketplace API running"}


@app.get("/test")
async def test_database(store=Depends(get_store)):
    try:
        await store.ping()
        collections = await store.list_collection_names()
        return {"backend": "ok", "database": "ok", "store": store.name, "collections": collections[:20]}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:120]}", "store": store.name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
