"""
Database Schemas for the Chef Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Booking -> "booking").

We will use these collections:
- account: login identities (user, chef, admin)
- userprofile: customer profiles, one per user account
- chefprofile: chef business profiles, one per chef account
- dish: menu items owned by a chef
- booking: a customer's booking of a chef and some of their dishes
- review: one review per completed booking

References between collections hold the referenced document's id as a string.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "chef", "admin"]
AccountStatus = Literal["pending", "active", "inactive", "suspended"]
BookingStatus = Literal["pending", "confirmed", "in-progress", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "refunded", "failed"]
PaymentMethod = Literal["cash", "card", "upi", "wallet"]
CancelledBy = Literal["user", "chef", "admin"]
EventType = Literal[
    "Birthday Party", "Wedding", "Corporate Event", "Casual Dinner", "Festival", "Anniversary", "Other"
]
Cuisine = Literal[
    "Italian", "Chinese", "Indian", "Mexican", "Japanese", "French", "Thai", "Continental", "Fusion", "Other"
]
Specialization = Literal[
    "Italian", "Chinese", "Indian", "Mexican", "Japanese", "French", "Thai",
    "Continental", "BBQ", "Desserts", "Vegan", "Fusion", "Street Food",
]
DishCategory = Literal[
    "Appetizer", "Main Course", "Dessert", "Beverage", "Snack", "Breakfast", "Salad", "Soup", "Side Dish"
]
SpiceLevel = Literal["None", "Mild", "Medium", "Hot", "Extra Hot"]


class Account(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("user")
    is_verified: bool = False
    refresh_token_hash: Optional[str] = Field(None, description="Hash of the single active refresh token")
    user_profile_id: Optional[str] = None
    chef_profile_id: Optional[str] = None


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class UserProfile(BaseModel):
    account_id: str
    full_name: str = Field(..., min_length=1, max_length=120)
    username: str = Field(..., min_length=3, max_length=40)
    phone: str
    avatar: str = ""
    address: Address = Field(default_factory=Address)
    booking_history: List[str] = Field(default_factory=list)
    favorite_chefs: List[str] = Field(default_factory=list)


class ServiceArea(BaseModel):
    city: str
    state: Optional[str] = None
    country: Optional[str] = None
    radius: Optional[float] = Field(None, ge=0)


class ChefProfile(BaseModel):
    account_id: str
    full_name: str = Field(..., min_length=1, max_length=120)
    phone: str
    avatar: str = Field(..., description="Avatar image URL")
    cover_image: str = ""
    bio: str = Field("", max_length=500)
    specialization: List[Specialization] = Field(default_factory=list)
    experience: int = Field(..., ge=0, description="Years of experience")
    service_locations: List[ServiceArea] = Field(default_factory=list)
    dishes: List[str] = Field(default_factory=list)
    price_per_hour: int = Field(..., ge=0)
    minimum_booking_hours: int = Field(2, ge=1)
    average_rating: float = Field(0, ge=0, le=5)
    total_reviews: int = 0
    total_bookings: int = 0
    completed_bookings: int = 0
    is_approved: bool = False
    is_available: bool = True
    account_status: AccountStatus = "pending"


class Ingredient(BaseModel):
    name: str
    quantity: Optional[str] = None
    unit: Optional[str] = None


class DietaryInfo(BaseModel):
    is_vegetarian: bool = False
    is_vegan: bool = False
    is_gluten_free: bool = False
    is_lactose_free: bool = False
    spice_level: SpiceLevel = "Mild"
    allergens: List[str] = Field(default_factory=list)


class Dish(BaseModel):
    chef_id: str
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., max_length=1000)
    category: DishCategory
    cuisine: Cuisine
    images: List[str] = Field(default_factory=list)
    preparation_time: int = Field(..., ge=0, description="Minutes")
    cooking_time: int = Field(..., ge=0, description="Minutes")
    servings: int = Field(1, ge=1)
    price: int = Field(..., ge=0, description="Price in whole currency units")
    ingredients: List[Ingredient] = Field(default_factory=list)
    dietary_info: DietaryInfo = Field(default_factory=DietaryInfo)
    tags: List[str] = Field(default_factory=list)
    is_available: bool = True
    orders_count: int = 0
    rating: float = Field(0, ge=0, le=5)


class BookingDish(BaseModel):
    dish_id: str
    name: str = Field(..., description="Snapshot of dish name")
    quantity: int = Field(..., ge=1)
    price: int = Field(..., ge=0, description="Snapshot of dish price at booking time")


class ServiceLocation(BaseModel):
    address: str = Field(..., min_length=1)
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class Booking(BaseModel):
    user_id: str
    chef_id: str
    dishes: List[BookingDish]
    booking_date: datetime
    booking_time: str
    event_type: EventType = "Casual Dinner"
    guest_count: int = Field(..., ge=1)
    service_location: ServiceLocation
    dishes_total: int
    chef_fee: int
    platform_fee: int = 0
    taxes: int = 0
    total_amount: int
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod = "cash"
    booking_status: BookingStatus = "pending"
    special_instructions: str = Field("", max_length=500)
    dietary_restrictions: List[str] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ChefResponse(BaseModel):
    comment: str = Field(..., min_length=1, max_length=1000)
    responded_at: datetime


class Review(BaseModel):
    booking_id: str
    user_id: str
    chef_id: str
    rating: int = Field(..., ge=1, le=5)
    food_quality: Optional[int] = Field(None, ge=1, le=5)
    professionalism: Optional[int] = Field(None, ge=1, le=5)
    punctuality: Optional[int] = Field(None, ge=1, le=5)
    comment: str = Field("", max_length=1000)
    chef_response: Optional[ChefResponse] = None
