"""
Reviews and chef rating aggregation

A customer may review each completed booking once. After every new review the
chef's average rating and review count are recomputed from all of that chef's
reviews. The recomputation is a separate write from the insert; if it fails
the next review brings the figures back in line.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError

import accounts
from bookings import COMPLETED
from database import sanitize, to_obj_id, utcnow
from errors import BadRequest, Forbidden, NotFound
from pricing import round_half_up
from schemas import ChefResponse, Review
from security import Principal

logger = logging.getLogger(__name__)


def average_rating(ratings: List[int]) -> float:
    if not ratings:
        return 0.0
    return round_half_up(Decimal(sum(ratings)) / Decimal(len(ratings)), 1)


async def refresh_chef_rating(store, chef_id: str) -> Dict:
    reviews = await store.find("review", {"chef_id": chef_id})
    ratings = [review["rating"] for review in reviews]
    stats = {"average_rating": average_rating(ratings), "total_reviews": len(ratings)}
    await store.patch("chefprofile", chef_id, stats)
    logger.info("Chef %s rating refreshed: %s over %s reviews", chef_id, stats["average_rating"], len(ratings))
    return stats


async def add_review(store, principal: Principal, booking_id: str, payload: Dict) -> Dict:
    booking = await store.get("booking", booking_id)
    if not booking:
        raise NotFound("Booking not found")
    if booking["booking_status"] != COMPLETED:
        raise BadRequest("You can only review completed bookings")

    profile = await accounts.find_user_profile(store, principal)
    if booking["user_id"] != str(profile["_id"]):
        raise Forbidden("You can only review your own bookings")

    if await store.find_one("review", {"booking_id": booking_id}):
        raise BadRequest("You have already reviewed this booking")

    doc = Review(
        booking_id=booking_id,
        user_id=str(profile["_id"]),
        chef_id=booking["chef_id"],
        rating=payload["rating"],
        food_quality=payload.get("food_quality"),
        professionalism=payload.get("professionalism"),
        punctuality=payload.get("punctuality"),
        comment=payload.get("comment") or "",
    ).model_dump()
    try:
        review = await store.insert("review", doc)
    except DuplicateKeyError:
        raise BadRequest("You have already reviewed this booking")

    await refresh_chef_rating(store, booking["chef_id"])
    return sanitize(review)


async def respond_to_review(store, principal: Principal, review_id: str, comment: str) -> Dict:
    chef = await accounts.find_chef_profile(store, principal)
    review = await store.get("review", review_id)
    if not review:
        raise NotFound("Review not found")
    if review["chef_id"] != str(chef["_id"]):
        raise Forbidden("You can only respond to reviews of your own bookings")
    if review.get("chef_response"):
        raise BadRequest("This review already has a response")

    response = ChefResponse(comment=comment, responded_at=utcnow()).model_dump()
    updated = await store.patch("review", review_id, {"chef_response": response})
    return sanitize(updated)


async def list_chef_reviews(store, chef_id: str, limit: int = 10, skip: int = 0) -> List[Dict]:
    reviews = await store.find(
        "review", {"chef_id": chef_id}, sort=[("created_at", -1)], skip=skip, limit=limit
    )
    user_ids = list(dict.fromkeys(r["user_id"] for r in reviews))
    users: Dict[str, Dict] = {}
    if user_ids:
        docs = await store.find("userprofile", {"_id": {"$in": [to_obj_id(i) for i in user_ids]}})
        users = {str(u["_id"]): u for u in docs}

    result = []
    for review in reviews:
        item = sanitize(review)
        user: Optional[Dict] = users.get(review["user_id"])
        item["user"] = {"full_name": user.get("full_name"), "avatar": user.get("avatar")} if user else None
        result.append(item)
    return result
