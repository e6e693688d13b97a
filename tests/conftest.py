import copy
from datetime import date

import pytest

import accounts
import admin
import catalog
from database import MemoryStore
from security import Principal


@pytest.fixture
def store():
    return MemoryStore()


async def register_user(store, username="asha", email="asha@example.com"):
    result = await accounts.register_user(
        store,
        {
            "full_name": "Asha Rao",
            "email": email,
            "username": username,
            "password": "password123",
            "phone": "9876543210",
        },
    )
    return Principal(account_id=result["account"]["id"], role="user"), result["account"]["profile"]


async def register_chef(store, email="chef@example.com", approve=True, price_per_hour=500, minimum_booking_hours=None):
    result = await accounts.register_chef(
        store,
        {
            "full_name": "Vikram Chef",
            "email": email,
            "password": "password123",
            "phone": "9123456780",
            "avatar": "https://img.example.com/vikram.png",
            "bio": "Coastal and North Indian food",
            "specialization": ["Indian"],
            "experience": 8,
            "price_per_hour": price_per_hour,
            "minimum_booking_hours": minimum_booking_hours,
            "service_locations": [{"city": "Pune", "state": "MH"}],
        },
    )
    principal = Principal(account_id=result["account"]["id"], role="chef")
    chef_id = result["account"]["profile"]["id"]
    if approve:
        await admin.approve_chef(store, chef_id)
    return principal, chef_id


async def add_dish(store, chef_principal, name, price, **extra):
    payload = {
        "name": name,
        "description": f"{name} cooked fresh",
        "category": "Main Course",
        "cuisine": "Indian",
        "preparation_time": 15,
        "cooking_time": 30,
        "price": price,
        **extra,
    }
    return await catalog.add_dish(store, chef_principal, payload)


class SnapshotSession:
    """Session that snapshots the store on begin and restores it on abort."""

    def __init__(self, store):
        self.store = store
        self.snapshot = None

    async def start_transaction(self):
        self.snapshot = copy.deepcopy(self.store._collections)

    async def commit_transaction(self):
        self.snapshot = None
        self.store.commits += 1

    async def abort_transaction(self):
        if self.snapshot is not None:
            self.store._collections = self.snapshot
            self.snapshot = None
        self.store.aborts += 1

    async def end_session(self):
        return None


class TransactionalMemoryStore(MemoryStore):
    """MemoryStore whose sessions run real (snapshot based) transactions."""

    supports_transactions = True

    def __init__(self):
        super().__init__()
        self.commits = 0
        self.aborts = 0
        self.write_sessions = []

    def start_session(self):
        return SnapshotSession(self)

    async def insert(self, collection, doc, session=None):
        self.write_sessions.append(session)
        return await super().insert(collection, doc, session=session)

    async def patch(self, collection, doc_id, fields, session=None):
        self.write_sessions.append(session)
        return await super().patch(collection, doc_id, fields, session=session)

    async def increment(self, collection, doc_id, counters, session=None):
        self.write_sessions.append(session)
        return await super().increment(collection, doc_id, counters, session=session)

    async def push(self, collection, doc_id, field, value, session=None):
        self.write_sessions.append(session)
        return await super().push(collection, doc_id, field, value, session=session)

    async def bulk_increment(self, collection, increments, session=None):
        self.write_sessions.append(session)
        return await super().bulk_increment(collection, increments, session=session)


@pytest.fixture
def transactional_store():
    return TransactionalMemoryStore()


async def seed_kitchen(store):
    """A registered user and an approved chef offering two dishes."""
    user, user_profile = await register_user(store)
    chef, chef_id = await register_chef(store)
    curry = await add_dish(store, chef, "Paneer Curry", 200)
    dal = await add_dish(store, chef, "Dal Tadka", 150)
    return {
        "store": store,
        "user": user,
        "user_profile_id": user_profile["id"],
        "chef": chef,
        "chef_id": chef_id,
        "curry": curry,
        "dal": dal,
    }


@pytest.fixture
async def kitchen(store):
    return await seed_kitchen(store)


@pytest.fixture
async def transactional_kitchen(transactional_store):
    return await seed_kitchen(transactional_store)


def booking_payload(kitchen, dishes=None, **overrides):
    payload = {
        "chef_id": kitchen["chef_id"],
        "dishes": dishes
        if dishes is not None
        else [{"dish_id": kitchen["curry"]["id"], "quantity": 2}, {"dish_id": kitchen["dal"]["id"], "quantity": 1}],
        "booking_date": date(2026, 12, 24),
        "booking_time": "19:30",
        "guest_count": 6,
        "service_location": {"address": "12 MG Road", "city": "Pune"},
    }
    payload.update(overrides)
    return payload
