"""
Accounts, profiles and favorites

An account is the login identity; its role decides which profile it links to.
Registration creates the account and its profile together in one unit of
work. When that unit runs without a transaction and the profile insert fails,
the freshly created account is deleted again.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

import security
from database import sanitize, to_obj_id
from errors import BadRequest, Conflict, NotFound, Unauthorized
from schemas import Account, ChefProfile, UserProfile
from security import Principal
from transaction import run_unit

logger = logging.getLogger(__name__)

PROFILE_LINKS = {"user": ("userprofile", "user_profile_id"), "chef": ("chefprofile", "chef_profile_id")}
USER_PROFILE_FIELDS = ("full_name", "phone", "address", "avatar")
FAVORITE_CHEF_FIELDS = (
    "full_name", "avatar", "specialization", "average_rating", "total_reviews",
    "price_per_hour", "service_locations", "is_available",
)


def public_account(account: Dict) -> Dict:
    d = sanitize(account)
    d.pop("password_hash", None)
    d.pop("refresh_token_hash", None)
    return d


async def _find_profile(store, principal: Principal, role: str, session=None) -> Dict:
    collection, link_field = PROFILE_LINKS[role]
    label = "User" if role == "user" else "Chef"
    account = await store.get("account", principal.account_id, session=session)
    if not account or not account.get(link_field):
        raise NotFound(f"{label} profile not found")
    profile = await store.get(collection, account[link_field], session=session)
    if not profile:
        raise NotFound(f"{label} profile not found")
    return profile


async def find_user_profile(store, principal: Principal, session=None) -> Dict:
    return await _find_profile(store, principal, "user", session=session)


async def find_chef_profile(store, principal: Principal, session=None) -> Dict:
    return await _find_profile(store, principal, "chef", session=session)


async def issue_tokens(store, account: Dict) -> Tuple[str, str]:
    account_id = str(account["_id"])
    access_token = security.create_access_token(account_id, account["role"], account["email"])
    refresh_token = security.create_refresh_token(account_id)
    await store.patch("account", account_id, {"refresh_token_hash": security.hash_refresh_token(refresh_token)})
    return access_token, refresh_token


async def _account_with_profile(store, account_id) -> Dict:
    account = await store.get("account", account_id)
    if not account:
        raise NotFound("Account not found")
    result = public_account(account)
    link = PROFILE_LINKS.get(account["role"])
    if link and account.get(link[1]):
        result["profile"] = sanitize(await store.get(link[0], account[link[1]]))
    return result


async def _auth_payload(store, account: Dict) -> Dict:
    access_token, refresh_token = await issue_tokens(store, account)
    return {
        "account": await _account_with_profile(store, account["_id"]),
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


async def _create_paired(
    store,
    account: Account,
    build_profile: Callable[[str], Dict],
    unique_checks: List[Tuple[str, Dict, str]] = (),
) -> Dict:
    collection, link_field = PROFILE_LINKS[account.role]

    async def work(session):
        if await store.find_one("account", {"email": account.email}, session=session):
            raise Conflict("Account with this email already exists")
        for check_collection, query, message in unique_checks:
            if await store.find_one(check_collection, query, session=session):
                raise Conflict(message)

        created = await store.insert("account", account.model_dump(), session=session)
        try:
            profile = await store.insert(collection, build_profile(str(created["_id"])), session=session)
        except Exception:
            if session is None:
                logger.warning("Profile creation failed; removing account %s", created["_id"])
                await store.delete("account", created["_id"])
            raise
        await store.patch("account", created["_id"], {link_field: str(profile["_id"])}, session=session)
        created[link_field] = str(profile["_id"])
        return created

    return await run_unit(store, work)


async def register_user(store, payload: Dict) -> Dict:
    email = payload["email"].strip().lower()
    username = payload["username"].strip().lower()
    account = Account(email=email, password_hash=security.hash_password(payload["password"]), role="user")

    def build_profile(account_id: str) -> Dict:
        return UserProfile(
            account_id=account_id,
            full_name=payload["full_name"],
            username=username,
            phone=payload["phone"],
            avatar=payload.get("avatar") or "",
        ).model_dump()

    created = await _create_paired(
        store, account, build_profile, [("userprofile", {"username": username}, "Username already taken")]
    )
    logger.info("Registered user account %s", created["_id"])
    return await _auth_payload(store, created)


async def register_chef(store, payload: Dict) -> Dict:
    email = payload["email"].strip().lower()
    account = Account(email=email, password_hash=security.hash_password(payload["password"]), role="chef")

    def build_profile(account_id: str) -> Dict:
        return ChefProfile(
            account_id=account_id,
            full_name=payload["full_name"],
            phone=payload["phone"],
            avatar=payload["avatar"],
            cover_image=payload.get("cover_image") or "",
            bio=payload.get("bio") or "",
            specialization=payload.get("specialization") or [],
            experience=payload["experience"],
            price_per_hour=payload["price_per_hour"],
            minimum_booking_hours=payload.get("minimum_booking_hours") or 2,
            service_locations=payload.get("service_locations") or [],
        ).model_dump()

    created = await _create_paired(store, account, build_profile)
    logger.info("Registered chef account %s, awaiting approval", created["_id"])
    return await _auth_payload(store, created)


async def login(store, email: str, password: str, role: str) -> Dict:
    account = await store.find_one("account", {"email": email.strip().lower(), "role": role})
    if not account or not security.verify_password(password, account.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    return await _auth_payload(store, account)


async def refresh_tokens(store, refresh_token: Optional[str]) -> Dict:
    if not refresh_token:
        raise Unauthorized("Unauthorized request")
    payload = security.decode_token(refresh_token, security.REFRESH)
    account = await store.get("account", payload["sub"])
    if not account:
        raise Unauthorized("Invalid refresh token")
    if not security.is_refresh_token_valid(account, refresh_token):
        raise Unauthorized("Refresh token is expired or used")
    access_token, new_refresh_token = await issue_tokens(store, account)
    return {"access_token": access_token, "refresh_token": new_refresh_token, "token_type": "bearer"}


async def logout(store, principal: Principal) -> None:
    await store.patch("account", principal.account_id, {"refresh_token_hash": None})


async def change_password(store, principal: Principal, old_password: str, new_password: str) -> None:
    account = await store.get("account", principal.account_id)
    if not account:
        raise NotFound("Account not found")
    if not security.verify_password(old_password, account.get("password_hash", "")):
        raise BadRequest("Invalid old password")
    await store.patch(
        "account",
        principal.account_id,
        {"password_hash": security.hash_password(new_password), "refresh_token_hash": None},
    )


async def get_account(store, principal: Principal) -> Dict:
    return await _account_with_profile(store, principal.account_id)


async def update_user_profile(store, principal: Principal, fields: Dict) -> Dict:
    profile = await find_user_profile(store, principal)
    updates = {k: v for k, v in fields.items() if k in USER_PROFILE_FIELDS and v is not None}
    if not updates:
        raise BadRequest("No profile fields to update")
    return sanitize(await store.patch("userprofile", profile["_id"], updates))


def _is_listed(chef: Optional[Dict]) -> bool:
    return bool(chef) and chef.get("is_approved") and chef.get("account_status") == "active"


async def list_favorite_chefs(store, principal: Principal) -> List[Dict]:
    profile = await find_user_profile(store, principal)
    favorite_ids = profile.get("favorite_chefs") or []
    if not favorite_ids:
        return []
    chefs = await store.find(
        "chefprofile",
        {"_id": {"$in": [to_obj_id(i) for i in favorite_ids]}, "is_approved": True, "account_status": "active"},
    )
    return [{"id": str(c["_id"]), **{f: c.get(f) for f in FAVORITE_CHEF_FIELDS}} for c in chefs]


async def add_favorite_chef(store, principal: Principal, chef_id: str) -> None:
    chef = await store.get("chefprofile", chef_id)
    if not _is_listed(chef):
        raise NotFound("Chef not found")
    profile = await find_user_profile(store, principal)
    await store.add_to_set("userprofile", profile["_id"], "favorite_chefs", str(chef["_id"]))


async def remove_favorite_chef(store, principal: Principal, chef_id: str) -> None:
    profile = await find_user_profile(store, principal)
    await store.pull("userprofile", profile["_id"], "favorite_chefs", chef_id)
