"""
Aggregate store

Every aggregate lives in its own collection, named after the lowercase class
name of its schema (Booking -> "booking"). Documents are addressed by an
ObjectId `_id`; references to other aggregates are stored as id strings.

Two backends share one interface:
- MongoStore: MongoDB through pymongo's asyncio client.
- MemoryStore: process-local dictionaries, used when DATABASE_URL is not set
  and in tests. It cannot run multi-document transactions.

All operations take an optional session. It is forwarded to the driver only
when one is given, so the same calls work inside and outside a transaction.
"""

import copy
import logging
import operator
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, AsyncMongoClient, IndexModel, ReturnDocument, UpdateOne
from pymongo.errors import DuplicateKeyError

import settings
from errors import BadRequest, TransactionsUnsupported

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]
Counters = Dict[str, int]

UNIQUE_FIELDS: Dict[str, List[str]] = {
    "account": ["email"],
    "userprofile": ["account_id", "username"],
    "chefprofile": ["account_id"],
    "review": ["booking_id"],
}

SECONDARY_INDEXES: Dict[str, List[List[Tuple[str, int]]]] = {
    "booking": [
        [("user_id", 1), ("booking_date", -1)],
        [("chef_id", 1), ("booking_date", -1)],
        [("booking_status", 1), ("booking_date", 1)],
    ],
    "chefprofile": [
        [("is_approved", 1), ("is_available", 1)],
        [("average_rating", -1), ("total_bookings", -1)],
    ],
    "dish": [[("chef_id", 1), ("is_available", 1)], [("category", 1), ("cuisine", 1)]],
    "review": [[("chef_id", 1), ("created_at", -1)]],
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise BadRequest("Invalid id")


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def get_pagination(page: int = 1, limit: int = 10, max_limit: int = 100) -> Tuple[int, int, int]:
    page = max(page or 1, 1)
    limit = min(max(limit or 1, 1), max_limit)
    return page, limit, (page - 1) * limit


def page_info(total: int, page: int, limit: int) -> Dict[str, int]:
    return {"total": total, "page": page, "pages": -(-total // limit)}


def _session_kwargs(session: Any) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


class AggregateStore:
    """Interface shared by the store backends."""

    name = "store"
    supports_transactions = False

    def start_session(self):
        raise NotImplementedError

    async def get(self, collection: str, doc_id: Any, session=None) -> Optional[Dict]:
        raise NotImplementedError

    async def find_one(self, collection: str, query: Dict, session=None) -> Optional[Dict]:
        raise NotImplementedError

    async def find(
        self,
        collection: str,
        query: Optional[Dict] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
        session=None,
    ) -> List[Dict]:
        raise NotImplementedError

    async def count(self, collection: str, query: Optional[Dict] = None, session=None) -> int:
        raise NotImplementedError

    async def insert(self, collection: str, doc: Dict, session=None) -> Dict:
        raise NotImplementedError

    async def patch(self, collection: str, doc_id: Any, fields: Dict, session=None) -> Optional[Dict]:
        """Set the given fields and return the updated document (None if absent)."""
        raise NotImplementedError

    async def increment(self, collection: str, doc_id: Any, counters: Counters, session=None) -> bool:
        raise NotImplementedError

    async def push(self, collection: str, doc_id: Any, field: str, value: Any, session=None) -> bool:
        raise NotImplementedError

    async def add_to_set(self, collection: str, doc_id: Any, field: str, value: Any, session=None) -> bool:
        raise NotImplementedError

    async def pull(self, collection: str, doc_id: Any, field: str, value: Any, session=None) -> bool:
        raise NotImplementedError

    async def bulk_increment(
        self, collection: str, increments: Iterable[Tuple[Any, Counters]], session=None
    ) -> int:
        """Apply several counter updates in one round trip; returns how many matched."""
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: Any, session=None) -> bool:
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError

    async def list_collection_names(self) -> List[str]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ---------- MongoDB ----------
class MongoStore(AggregateStore):
    supports_transactions = True

    def __init__(self, url: str, name: str):
        self.client = AsyncMongoClient(url, tz_aware=True)
        self.db = self.client[name]
        self.name = name

    def start_session(self):
        return self.client.start_session()

    async def get(self, collection, doc_id, session=None):
        return await self.db[collection].find_one({"_id": to_obj_id(doc_id)}, **_session_kwargs(session))

    async def find_one(self, collection, query, session=None):
        return await self.db[collection].find_one(query, **_session_kwargs(session))

    async def find(self, collection, query=None, sort=None, skip=0, limit=0, session=None):
        cursor = self.db[collection].find(query or {}, **_session_kwargs(session))
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(None)

    async def count(self, collection, query=None, session=None):
        return await self.db[collection].count_documents(query or {}, **_session_kwargs(session))

    async def insert(self, collection, doc, session=None):
        stamp = utcnow()
        doc = {**doc, "created_at": stamp, "updated_at": stamp}
        res = await self.db[collection].insert_one(doc, **_session_kwargs(session))
        doc["_id"] = res.inserted_id
        return doc

    async def patch(self, collection, doc_id, fields, session=None):
        return await self.db[collection].find_one_and_update(
            {"_id": to_obj_id(doc_id)},
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
            **_session_kwargs(session),
        )

    async def _update(self, collection, doc_id, update, session):
        update = {**update, "$set": {"updated_at": utcnow()}}
        res = await self.db[collection].update_one(
            {"_id": to_obj_id(doc_id)}, update, **_session_kwargs(session)
        )
        return res.matched_count > 0

    async def increment(self, collection, doc_id, counters, session=None):
        return await self._update(collection, doc_id, {"$inc": counters}, session)

    async def push(self, collection, doc_id, field, value, session=None):
        return await self._update(collection, doc_id, {"$push": {field: value}}, session)

    async def add_to_set(self, collection, doc_id, field, value, session=None):
        return await self._update(collection, doc_id, {"$addToSet": {field: value}}, session)

    async def pull(self, collection, doc_id, field, value, session=None):
        return await self._update(collection, doc_id, {"$pull": {field: value}}, session)

    async def bulk_increment(self, collection, increments, session=None):
        stamp = utcnow()
        ops = [
            UpdateOne({"_id": to_obj_id(doc_id)}, {"$inc": counters, "$set": {"updated_at": stamp}})
            for doc_id, counters in increments
        ]
        if not ops:
            return 0
        res = await self.db[collection].bulk_write(ops, ordered=True, **_session_kwargs(session))
        return res.matched_count

    async def delete(self, collection, doc_id, session=None):
        res = await self.db[collection].delete_one({"_id": to_obj_id(doc_id)}, **_session_kwargs(session))
        return res.deleted_count > 0

    async def ensure_indexes(self):
        for collection, fields in UNIQUE_FIELDS.items():
            models = [IndexModel([(field, ASCENDING)], unique=True) for field in fields]
            await self.db[collection].create_indexes(models)
        for collection, specs in SECONDARY_INDEXES.items():
            await self.db[collection].create_indexes([IndexModel(keys) for keys in specs])

    async def ping(self):
        await self.client.admin.command("ping")
        return True

    async def list_collection_names(self):
        return await self.db.list_collection_names()

    async def close(self):
        await self.client.close()


# ---------- In-memory ----------
UNSUPPORTED_MESSAGE = "Transaction numbers are only allowed on a replica set member or mongos"


class MemorySession:
    """Session handle for MemoryStore. Transactions are refused."""

    async def start_transaction(self):
        raise TransactionsUnsupported(UNSUPPORTED_MESSAGE)

    async def commit_transaction(self):
        raise TransactionsUnsupported(UNSUPPORTED_MESSAGE)

    async def abort_transaction(self):
        return None

    async def end_session(self):
        return None


_COMPARATORS = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


def _values_at(doc: Any, path: str) -> List[Any]:
    current = [doc]
    for part in path.split("."):
        found = []
        for item in current:
            if isinstance(item, dict):
                if part in item:
                    found.append(item[part])
            elif isinstance(item, list):
                found.extend(el[part] for el in item if isinstance(el, dict) and part in el)
        current = found
    return current


def _candidates(doc: Dict, path: str) -> List[Any]:
    values = []
    for value in _values_at(doc, path):
        values.append(value)
        if isinstance(value, list):
            values.extend(value)
    return values


def _apply_operator(op: str, arg: Any, candidates: List[Any], options: str) -> bool:
    if op == "$eq":
        return arg in candidates or (arg is None and not candidates)
    if op == "$ne":
        return not _apply_operator("$eq", arg, candidates, options)
    if op == "$in":
        return any(a in candidates for a in arg) or (None in arg and not candidates)
    if op == "$nin":
        return not _apply_operator("$in", arg, candidates, options)
    if op == "$exists":
        return bool(candidates) == bool(arg)
    if op == "$regex":
        pattern = re.compile(arg, re.IGNORECASE if "i" in options else 0)
        return any(isinstance(c, str) and pattern.search(c) for c in candidates)
    if op in _COMPARATORS:
        compare = _COMPARATORS[op]
        for candidate in candidates:
            try:
                if compare(candidate, arg):
                    return True
            except TypeError:
                continue
        return False
    raise ValueError(f"Unsupported query operator: {op}")


def _match_field(doc: Dict, path: str, condition: Any) -> bool:
    candidates = _candidates(doc, path)
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        options = condition.get("$options", "")
        return all(
            _apply_operator(op, arg, candidates, options)
            for op, arg in condition.items()
            if op != "$options"
        )
    return _apply_operator("$eq", condition, candidates, "")


def matches(doc: Dict, query: Optional[Dict]) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_field(doc, key, condition):
            return False
    return True


def _sort_key(doc: Dict, field: str):
    values = _values_at(doc, field)
    if not values or values[0] is None:
        return (0,)
    return (1, values[0])


class MemoryStore(AggregateStore):
    name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[ObjectId, Dict]] = defaultdict(dict)

    def start_session(self):
        return MemorySession()

    def _check_unique(self, collection: str, doc: Dict, exclude: Optional[ObjectId] = None) -> None:
        for field in UNIQUE_FIELDS.get(collection, []):
            value = doc.get(field)
            if value is None:
                continue
            for other_id, other in self._collections[collection].items():
                if other_id != exclude and other.get(field) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {collection} index: {field}_1",
                        11000,
                        {"keyPattern": {field: 1}, "keyValue": {field: value}},
                    )

    def _doc(self, collection: str, doc_id: Any) -> Optional[Dict]:
        return self._collections[collection].get(to_obj_id(doc_id))

    async def get(self, collection, doc_id, session=None):
        return copy.deepcopy(self._doc(collection, doc_id))

    async def find_one(self, collection, query, session=None):
        for doc in self._collections[collection].values():
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(self, collection, query=None, sort=None, skip=0, limit=0, session=None):
        docs = [doc for doc in self._collections[collection].values() if matches(doc, query)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: _sort_key(d, field), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def count(self, collection, query=None, session=None):
        return sum(1 for doc in self._collections[collection].values() if matches(doc, query))

    async def insert(self, collection, doc, session=None):
        stamp = utcnow()
        doc = copy.deepcopy({**doc, "created_at": stamp, "updated_at": stamp})
        doc.setdefault("_id", ObjectId())
        self._check_unique(collection, doc)
        self._collections[collection][doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def patch(self, collection, doc_id, fields, session=None):
        doc = self._doc(collection, doc_id)
        if doc is None:
            return None
        self._check_unique(collection, {**doc, **fields}, exclude=doc["_id"])
        doc.update(copy.deepcopy(fields))
        doc["updated_at"] = utcnow()
        return copy.deepcopy(doc)

    async def increment(self, collection, doc_id, counters, session=None):
        doc = self._doc(collection, doc_id)
        if doc is None:
            return False
        for field, amount in counters.items():
            doc[field] = doc.get(field, 0) + amount
        doc["updated_at"] = utcnow()
        return True

    async def push(self, collection, doc_id, field, value, session=None):
        doc = self._doc(collection, doc_id)
        if doc is None:
            return False
        doc.setdefault(field, []).append(copy.deepcopy(value))
        doc["updated_at"] = utcnow()
        return True

    async def add_to_set(self, collection, doc_id, field, value, session=None):
        doc = self._doc(collection, doc_id)
        if doc is None:
            return False
        values = doc.setdefault(field, [])
        if value not in values:
            values.append(copy.deepcopy(value))
        doc["updated_at"] = utcnow()
        return True

    async def pull(self, collection, doc_id, field, value, session=None):
        doc = self._doc(collection, doc_id)
        if doc is None:
            return False
        doc[field] = [v for v in doc.get(field, []) if v != value]
        doc["updated_at"] = utcnow()
        return True

    async def bulk_increment(self, collection, increments, session=None):
        matched = 0
        for doc_id, counters in increments:
            if await self.increment(collection, doc_id, counters, session=session):
                matched += 1
        return matched

    async def delete(self, collection, doc_id, session=None):
        return self._collections[collection].pop(to_obj_id(doc_id), None) is not None

    async def ensure_indexes(self):
        return None

    async def ping(self):
        return True

    async def list_collection_names(self):
        return [name for name, docs in self._collections.items() if docs]


def build_store() -> AggregateStore:
    if settings.DATABASE_URL:
        logger.info("Using MongoDB database %r", settings.DATABASE_NAME)
        return MongoStore(settings.DATABASE_URL, settings.DATABASE_NAME)
    if settings.IS_PRODUCTION:
        raise RuntimeError("DATABASE_URL is required in production")
    logger.warning("DATABASE_URL is not set; falling back to the in-memory store")
    return MemoryStore()


store = build_store()
