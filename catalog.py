"""
Chef and dish catalog

Chef-side management of a chef's own profile and menu, plus the public browse
and search views. Public listings only ever show chefs that are approved,
active and available.
"""

import logging
import re
from typing import Dict, List, Optional

import accounts
import reviews
from bookings import CONFIRMED, IN_PROGRESS, PENDING, COMPLETED
from database import get_pagination, page_info, sanitize
from errors import BadRequest, Forbidden, NotFound
from schemas import Dish
from security import Principal

logger = logging.getLogger(__name__)

CHEF_PROFILE_FIELDS = (
    "full_name", "phone", "bio", "avatar", "cover_image", "specialization", "experience",
    "price_per_hour", "minimum_booking_hours", "service_locations",
)
DISH_FIELDS = (
    "name", "description", "category", "cuisine", "images", "preparation_time", "cooking_time",
    "servings", "price", "ingredients", "dietary_info", "tags", "is_available",
)
CHEF_CARD_FIELDS = (
    "full_name", "avatar", "cover_image", "specialization", "experience", "price_per_hour",
    "average_rating", "total_reviews", "total_bookings", "service_locations", "bio", "is_available",
)
CHEF_SORT_FIELDS = ("average_rating", "price_per_hour", "total_bookings", "experience", "created_at")
LISTED_CHEF = {"is_approved": True, "is_available": True, "account_status": "active"}


def search_term(value: Optional[str], max_length: int = 64) -> str:
    return re.escape((value or "").strip()[:max_length])


def _card(chef: Dict) -> Dict:
    return {"id": str(chef["_id"]), **{f: chef.get(f) for f in CHEF_CARD_FIELDS}}


def _pick(fields: Dict, allowed) -> Dict:
    return {k: v for k, v in fields.items() if k in allowed and v is not None}


# ---------- Chef-side ----------
async def get_chef_profile(store, principal: Principal) -> Dict:
    account = await accounts.get_account(store, principal)
    chef = await accounts.find_chef_profile(store, principal)
    dishes = await store.find("dish", {"chef_id": str(chef["_id"])}, sort=[("created_at", -1)])
    account["profile"]["dishes"] = [sanitize(d) for d in dishes]
    return account


async def update_chef_profile(store, principal: Principal, fields: Dict) -> Dict:
    chef = await accounts.find_chef_profile(store, principal)
    updates = _pick(fields, CHEF_PROFILE_FIELDS)
    if not updates:
        raise BadRequest("No profile fields to update")
    return sanitize(await store.patch("chefprofile", chef["_id"], updates))


async def toggle_availability(store, principal: Principal) -> Dict:
    chef = await accounts.find_chef_profile(store, principal)
    updated = await store.patch("chefprofile", chef["_id"], {"is_available": not chef.get("is_available")})
    return {"is_available": updated["is_available"]}


async def chef_stats(store, principal: Principal) -> Dict:
    chef = await accounts.find_chef_profile(store, principal)
    chef_id = str(chef["_id"])
    paid = await store.find(
        "booking", {"chef_id": chef_id, "booking_status": COMPLETED, "payment_status": "paid"}
    )
    return {
        "total_dishes": await store.count("dish", {"chef_id": chef_id}),
        "total_bookings": chef.get("total_bookings", 0),
        "completed_bookings": chef.get("completed_bookings", 0),
        "pending_bookings": await store.count("booking", {"chef_id": chef_id, "booking_status": PENDING}),
        "active_bookings": await store.count(
            "booking", {"chef_id": chef_id, "booking_status": {"$in": [CONFIRMED, IN_PROGRESS]}}
        ),
        "average_rating": chef.get("average_rating", 0),
        "total_reviews": chef.get("total_reviews", 0),
        "total_earnings": sum(b.get("chef_fee", 0) for b in paid),
        "is_available": chef.get("is_available"),
        "account_status": chef.get("account_status"),
    }


async def add_dish(store, principal: Principal, payload: Dict) -> Dict:
    chef = await accounts.find_chef_profile(store, principal)
    doc = Dish(chef_id=str(chef["_id"]), **_pick(payload, DISH_FIELDS)).model_dump()
    dish = await store.insert("dish", doc)
    await store.push("chefprofile", chef["_id"], "dishes", str(dish["_id"]))
    logger.info("Chef %s added dish %s", chef["_id"], dish["_id"])
    return sanitize(dish)


async def _own_dish(store, principal: Principal, dish_id: str, action: str):
    chef = await accounts.find_chef_profile(store, principal)
    dish = await store.get("dish", dish_id)
    if not dish:
        raise NotFound("Dish not found")
    if dish["chef_id"] != str(chef["_id"]):
        raise Forbidden(f"You can only {action} your own dishes")
    return chef, dish


async def update_dish(store, principal: Principal, dish_id: str, fields: Dict) -> Dict:
    await _own_dish(store, principal, dish_id, "update")
    updates = _pick(fields, DISH_FIELDS)
    if not updates:
        raise BadRequest("No dish fields to update")
    return sanitize(await store.patch("dish", dish_id, updates))


async def delete_dish(store, principal: Principal, dish_id: str) -> None:
    chef, dish = await _own_dish(store, principal, dish_id, "delete")
    await store.delete("dish", dish_id)
    await store.pull("chefprofile", chef["_id"], "dishes", str(dish["_id"]))


async def list_own_dishes(
    store, principal: Principal, category: Optional[str] = None, is_available: Optional[bool] = None
) -> List[Dict]:
    chef = await accounts.find_chef_profile(store, principal)
    query: Dict = {"chef_id": str(chef["_id"])}
    if category:
        query["category"] = category
    if is_available is not None:
        query["is_available"] = is_available
    return [sanitize(d) for d in await store.find("dish", query, sort=[("created_at", -1)])]


# ---------- Public ----------
async def list_chefs(
    store,
    city: Optional[str] = None,
    specialization: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    min_rating: Optional[float] = None,
    sort_by: str = "average_rating",
    order: str = "desc",
    page: int = 1,
    limit: int = 12,
) -> Dict:
    if sort_by not in CHEF_SORT_FIELDS:
        raise BadRequest(f"sort_by must be one of: {', '.join(CHEF_SORT_FIELDS)}")
    query: Dict = dict(LISTED_CHEF)
    if city:
        query["service_locations.city"] = {"$regex": search_term(city), "$options": "i"}
    if specialization:
        query["specialization"] = {"$in": [s.strip() for s in specialization.split(",") if s.strip()]}
    if min_price is not None or max_price is not None:
        query["price_per_hour"] = {}
        if min_price is not None:
            query["price_per_hour"]["$gte"] = min_price
        if max_price is not None:
            query["price_per_hour"]["$lte"] = max_price
    if min_rating is not None:
        query["average_rating"] = {"$gte": min_rating}

    page, limit, skip = get_pagination(page, limit)
    sort = [(sort_by, 1 if order == "asc" else -1)]
    chefs = await store.find("chefprofile", query, sort=sort, skip=skip, limit=limit)
    total = await store.count("chefprofile", query)
    return {"chefs": [_card(c) for c in chefs], "pagination": page_info(total, page, limit)}


async def search_chefs(store, q: Optional[str], page: int = 1, limit: int = 12) -> Dict:
    term = search_term(q)
    if not term:
        raise BadRequest("Search query is required")
    pattern = {"$regex": term, "$options": "i"}
    query = {
        **LISTED_CHEF,
        "$or": [
            {"full_name": pattern},
            {"specialization": pattern},
            {"bio": pattern},
            {"service_locations.city": pattern},
        ],
    }
    page, limit, skip = get_pagination(page, limit)
    chefs = await store.find("chefprofile", query, sort=[("average_rating", -1)], skip=skip, limit=limit)
    total = await store.count("chefprofile", query)
    return {"chefs": [_card(c) for c in chefs], "pagination": page_info(total, page, limit)}


async def get_chef(store, chef_id: str) -> Dict:
    chef = await store.get("chefprofile", chef_id)
    if not chef or not chef.get("is_approved"):
        raise NotFound("Chef not found")
    dishes = await store.find("dish", {"chef_id": chef_id, "is_available": True}, sort=[("orders_count", -1)])
    return {
        "chef": _card(chef),
        "dishes": [sanitize(d) for d in dishes],
        "reviews": await reviews.list_chef_reviews(store, chef_id, limit=10),
    }


async def list_chef_dishes(
    store,
    chef_id: str,
    category: Optional[str] = None,
    cuisine: Optional[str] = None,
    vegetarian: bool = False,
    page: int = 1,
    limit: int = 20,
) -> Dict:
    chef = await store.get("chefprofile", chef_id)
    if not chef:
        raise NotFound("Chef not found")
    query: Dict = {"chef_id": chef_id, "is_available": True}
    if category:
        query["category"] = category
    if cuisine:
        query["cuisine"] = cuisine
    if vegetarian:
        query["dietary_info.is_vegetarian"] = True

    page, limit, skip = get_pagination(page, limit)
    dishes = await store.find("dish", query, sort=[("orders_count", -1)], skip=skip, limit=limit)
    total = await store.count("dish", query)
    return {
        "dishes": [sanitize(d) for d in dishes],
        "chef": {"full_name": chef.get("full_name"), "avatar": chef.get("avatar"), "average_rating": chef.get("average_rating")},
        "pagination": page_info(total, page, limit),
    }


async def get_dish(store, dish_id: str) -> Dict:
    dish = await store.get("dish", dish_id)
    if not dish:
        raise NotFound("Dish not found")
    chef = await store.get("chefprofile", dish["chef_id"])
    result = sanitize(dish)
    result["chef"] = _card(chef) if chef else None
    return result


async def search_dishes(
    store,
    q: Optional[str] = None,
    category: Optional[str] = None,
    cuisine: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    vegetarian: bool = False,
    vegan: bool = False,
    spice_level: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict:
    query: Dict = {"is_available": True}
    term = search_term(q)
    if term:
        pattern = {"$regex": term, "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    if category:
        query["category"] = category
    if cuisine:
        query["cuisine"] = cuisine
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if vegetarian:
        query["dietary_info.is_vegetarian"] = True
    if vegan:
        query["dietary_info.is_vegan"] = True
    if spice_level:
        query["dietary_info.spice_level"] = spice_level

    page, limit, skip = get_pagination(page, limit)
    dishes = await store.find("dish", query, sort=[("orders_count", -1)], skip=skip, limit=limit)
    total = await store.count("dish", query)
    return {"dishes": [sanitize(d) for d in dishes], "pagination": page_info(total, page, limit)}
