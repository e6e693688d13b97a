import logging
from typing import Dict, List

import accounts
import security
import settings
from errors import BadRequest, NotFound
from schemas import Account

logger = logging.getLogger(__name__)

MODERATION_FIELDS = (
    "full_name", "avatar", "phone", "specialization", "price_per_hour",
    "account_status", "is_approved", "is_available", "created_at",
)


def _moderation_view(chef: Dict) -> Dict:
    return {"id": str(chef["_id"]), **{f: chef.get(f) for f in MODERATION_FIELDS}}


async def list_pending_chefs(store) -> List[Dict]:
    chefs = await store.find("chefprofile", {"account_status": "pending"}, sort=[("created_at", 1)])
    return [_moderation_view(c) for c in chefs]


async def _set_chef_state(store, chef_id: str, updates: Dict) -> Dict:
    updated = await store.patch("chefprofile", chef_id, updates)
    if not updated:
        raise NotFound("Chef profile not found")
    logger.info("Chef %s moderated: %s", chef_id, updates)
    return _moderation_view(updated)


async def approve_chef(store, chef_id: str) -> Dict:
    return await _set_chef_state(store, chef_id, {"is_approved": True, "account_status": "active"})


async def reject_chef(store, chef_id: str) -> Dict:
    return await _set_chef_state(
        store, chef_id, {"is_approved": False, "account_status": "inactive", "is_available": False}
    )


async def suspend_chef(store, chef_id: str) -> Dict:
    return await _set_chef_state(store, chef_id, {"account_status": "suspended", "is_available": False})


async def dashboard(store) -> Dict:
    return {
        "total_users": await store.count("account", {"role": "user"}),
        "total_chefs": await store.count("chefprofile"),
        "pending_chefs": await store.count("chefprofile", {"account_status": "pending"}),
        "total_dishes": await store.count("dish"),
        "total_bookings": await store.count("booking"),
        "total_reviews": await store.count("review"),
    }


async def bootstrap_admin(store) -> Dict:
    """Create the first admin account from ADMIN_EMAIL / ADMIN_PASSWORD."""
    if await store.count("account", {"role": "admin"}) > 0:
        raise BadRequest("Admin already exists")
    doc = Account(
        email=settings.ADMIN_EMAIL.lower(),
        password_hash=security.hash_password(settings.ADMIN_PASSWORD),
        role="admin",
        is_verified=True,
    ).model_dump()
    account = await store.insert("account", doc)
    logger.info("Bootstrap admin %s created", account["email"])
    return accounts.public_account(account)
