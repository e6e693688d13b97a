"""
Booking lifecycle

Creation prices the requested dishes and, in one unit of work, stores the
booking, appends it to the customer's history and bumps the chef's and the
dishes' counters. Afterwards a booking only moves forward through its status
machine; completed and cancelled are final. Bookings are never deleted.

When the unit of work runs without a transaction the writes are applied one
after another with no compensation if a later one fails.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import accounts
from database import get_pagination, page_info, sanitize, to_obj_id, utcnow
from errors import BadRequest, Forbidden, NotFound
from pricing import price_booking
from schemas import Booking, BookingDish, ServiceLocation
from security import Principal
from transaction import run_unit

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)
CHEF_STATUS_TARGETS = (CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED)
TRANSITIONS = {
    PENDING: (CONFIRMED, CANCELLED),
    CONFIRMED: (IN_PROGRESS, CANCELLED),
    IN_PROGRESS: (COMPLETED, CANCELLED),
    COMPLETED: (),
    CANCELLED: (),
}

USER_SUMMARY = ("full_name", "avatar", "phone", "address")
CHEF_SUMMARY = ("full_name", "avatar", "phone", "specialization", "price_per_hour")
DISH_SUMMARY = ("name", "description", "images", "price", "category", "cuisine")


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise BadRequest("booking_date must be a date")


def _summary(doc: Optional[Dict], fields: Sequence[str]) -> Optional[Dict]:
    if doc is None:
        return None
    return {"id": str(doc["_id"]), **{field: doc.get(field) for field in fields}}


def ensure_bookable(chef: Dict) -> None:
    if not chef.get("is_approved") or chef.get("account_status") != "active":
        raise BadRequest("Chef is not approved to take bookings")
    if not chef.get("is_available"):
        raise BadRequest("Chef is currently not available")


async def _fetch_by_ids(store, collection: str, ids: Iterable[str]) -> Dict[str, Dict]:
    unique_ids = list(dict.fromkeys(ids))
    if not unique_ids:
        return {}
    docs = await store.find(collection, {"_id": {"$in": [to_obj_id(i) for i in unique_ids]}})
    return {str(doc["_id"]): doc for doc in docs}


async def compose_bookings(store, bookings: List[Dict]) -> List[Dict]:
    """Attach user, chef and dish summaries, batch-fetched by id."""
    users = await _fetch_by_ids(store, "userprofile", (b["user_id"] for b in bookings))
    chefs = await _fetch_by_ids(store, "chefprofile", (b["chef_id"] for b in bookings))
    dishes = await _fetch_by_ids(store, "dish", (item["dish_id"] for b in bookings for item in b["dishes"]))

    composed = []
    for booking in bookings:
        result = sanitize(booking)
        result["user"] = _summary(users.get(booking["user_id"]), USER_SUMMARY)
        result["chef"] = _summary(chefs.get(booking["chef_id"]), CHEF_SUMMARY)
        result["dishes"] = [
            {**item, "dish": _summary(dishes.get(item["dish_id"]), DISH_SUMMARY)} for item in booking["dishes"]
        ]
        composed.append(result)
    return composed


async def compose_booking(store, booking: Dict) -> Dict:
    return (await compose_bookings(store, [booking]))[0]


async def create_booking(store, principal: Principal, payload: Dict) -> Dict:
    requested = [(item["dish_id"], int(item.get("quantity", 1))) for item in payload.get("dishes") or []]
    booking_date = _as_datetime(payload["booking_date"])

    async def work(session):
        user_profile = await accounts.find_user_profile(store, principal, session=session)
        chef = await store.get("chefprofile", payload["chef_id"], session=session)
        if not chef:
            raise NotFound("Chef not found")
        ensure_bookable(chef)

        dish_docs = await store.find(
            "dish", {"_id": {"$in": [to_obj_id(dish_id) for dish_id, _ in requested]}}, session=session
        )
        quote = price_booking(chef, {str(d["_id"]): d for d in dish_docs}, requested)

        doc = Booking(
            user_id=str(user_profile["_id"]),
            chef_id=str(chef["_id"]),
            dishes=[BookingDish(**item.to_document()) for item in quote.line_items],
            booking_date=booking_date,
            booking_time=payload["booking_time"],
            event_type=payload.get("event_type") or "Casual Dinner",
            guest_count=payload["guest_count"],
            service_location=ServiceLocation(**payload["service_location"]),
            dishes_total=quote.dishes_total,
            chef_fee=quote.chef_fee,
            platform_fee=quote.platform_fee,
            taxes=quote.taxes,
            total_amount=quote.total_amount,
            payment_method=payload.get("payment_method") or "cash",
            special_instructions=payload.get("special_instructions") or "",
            dietary_restrictions=payload.get("dietary_restrictions") or [],
        ).model_dump()

        booking = await store.insert("booking", doc, session=session)
        booking_id = str(booking["_id"])
        await store.push("userprofile", user_profile["_id"], "booking_history", booking_id, session=session)
        await store.increment("chefprofile", chef["_id"], {"total_bookings": 1}, session=session)
        await store.bulk_increment(
            "dish",
            [(item.dish_id, {"orders_count": item.quantity}) for item in quote.line_items],
            session=session,
        )
        return booking

    booking = await run_unit(store, work)
    logger.info(
        "Booking %s created for chef %s, total %s", booking["_id"], booking["chef_id"], booking["total_amount"]
    )
    return await compose_booking(store, booking)


async def _load_booking(store, booking_id: str) -> Dict:
    booking = await store.get("booking", booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def get_booking(store, principal: Principal, booking_id: str) -> Dict:
    booking = await _load_booking(store, booking_id)

    if principal.role == "user":
        profile = await accounts.find_user_profile(store, principal)
        authorized = booking["user_id"] == str(profile["_id"])
    elif principal.role == "chef":
        profile = await accounts.find_chef_profile(store, principal)
        authorized = booking["chef_id"] == str(profile["_id"])
    else:
        authorized = principal.role == "admin"

    if not authorized:
        raise Forbidden("You are not authorized to view this booking")
    return await compose_booking(store, booking)


async def _list_bookings(store, query: Dict, status: Optional[str], page: int, limit: int) -> Dict:
    if status:
        if status not in BOOKING_STATUSES:
            raise BadRequest(f"Invalid status. Must be one of: {', '.join(BOOKING_STATUSES)}")
        query["booking_status"] = status
    page, limit, skip = get_pagination(page, limit)
    docs = await store.find("booking", query, sort=[("booking_date", -1)], skip=skip, limit=limit)
    total = await store.count("booking", query)
    return {"bookings": await compose_bookings(store, docs), "pagination": page_info(total, page, limit)}


async def list_user_bookings(store, principal: Principal, status: Optional[str] = None, page: int = 1, limit: int = 10):
    profile = await accounts.find_user_profile(store, principal)
    return await _list_bookings(store, {"user_id": str(profile["_id"])}, status, page, limit)


async def list_chef_bookings(store, principal: Principal, status: Optional[str] = None, page: int = 1, limit: int = 10):
    profile = await accounts.find_chef_profile(store, principal)
    return await _list_bookings(store, {"chef_id": str(profile["_id"])}, status, page, limit)


async def cancel_booking(store, principal: Principal, booking_id: str, reason: Optional[str] = None) -> Dict:
    booking = await _load_booking(store, booking_id)

    if principal.role == "user":
        profile = await accounts.find_user_profile(store, principal)
        if booking["user_id"] != str(profile["_id"]):
            raise Forbidden("You can only cancel your own bookings")
    elif principal.role != "admin":
        raise Forbidden("Chefs cancel bookings by updating the booking status")

    current = booking["booking_status"]
    if current in TERMINAL_STATUSES:
        raise BadRequest(f"Booking cannot be cancelled, it is already {current}")

    actor = principal.role
    updated = await store.patch(
        "booking",
        booking_id,
        {
            "booking_status": CANCELLED,
            "cancellation_reason": reason or f"Cancelled by {actor}",
            "cancelled_by": actor,
            "cancelled_at": utcnow(),
        },
    )
    logger.info("Booking %s cancelled by %s", booking_id, actor)
    return sanitize(updated)


async def update_booking_status(
    store, principal: Principal, booking_id: str, status: str, reason: Optional[str] = None
) -> Dict:
    if status not in CHEF_STATUS_TARGETS:
        raise BadRequest(f"Invalid status. Must be one of: {', '.join(CHEF_STATUS_TARGETS)}")

    chef = await accounts.find_chef_profile(store, principal)
    booking = await _load_booking(store, booking_id)
    if booking["chef_id"] != str(chef["_id"]):
        raise Forbidden("You can only update your own bookings")

    current = booking["booking_status"]
    if current in TERMINAL_STATUSES:
        raise BadRequest(f"Booking is already {current}; its status can no longer change")
    allowed = TRANSITIONS[current]
    if status not in allowed:
        raise BadRequest(f"Cannot move booking from {current} to {status}. Allowed: {', '.join(allowed)}")

    fields: Dict = {"booking_status": status}
    if status == COMPLETED:
        fields["completed_at"] = utcnow()
    elif status == CANCELLED:
        fields.update(cancelled_by="chef", cancelled_at=utcnow(), cancellation_reason=reason or "Cancelled by chef")

    async def work(session):
        updated = await store.patch("booking", booking_id, fields, session=session)
        if status == COMPLETED:
            await store.increment("chefprofile", chef["_id"], {"completed_bookings": 1}, session=session)
        return updated

    updated = await run_unit(store, work)
    logger.info("Booking %s moved from %s to %s", booking_id, current, status)
    return sanitize(updated)
