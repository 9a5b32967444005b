"""
Document store access.

Everything above this module talks to a `Store`: a small async interface over
named collections of documents keyed by `_id`. `MongoStore` backs it with
MongoDB; `MemoryStore` keeps documents in process and understands the subset
of the Mongo filter language the service uses, for development and tests.

Both raise `StorageError` on faults and `ValidationError` on unique-key
violations.
"""

import copy
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from errors import StorageError, ValidationError
from logs import get_logger

logger = get_logger(__name__)

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

# Helpers

def to_obj_id(id_str: Any) -> Optional[ObjectId]:
    """Parse an id; malformed ids yield None so lookups simply miss."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class Store:
    """Async document store interface."""

    async def find_one(self, collection: str, filter: Filter) -> Optional[Dict]:
        raise NotImplementedError

    async def find(
        self,
        collection: str,
        filter: Filter,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict]:
        raise NotImplementedError

    async def count(self, collection: str, filter: Filter) -> int:
        raise NotImplementedError

    async def insert(self, collection: str, doc: Dict) -> Dict:
        raise NotImplementedError

    async def update_by_id(self, collection: str, id: Any, patch: Dict) -> Optional[Dict]:
        """Apply `patch` as a `$set` and return the updated document."""
        raise NotImplementedError

    async def toggle_by_id(
        self, collection: str, id: Any, field: str, extra: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Atomically negate a boolean field and return the updated document."""
        raise NotImplementedError

    async def delete_by_id(self, collection: str, id: Any) -> bool:
        raise NotImplementedError

    async def aggregate_group_by(
        self, collection: str, field: str, filter: Optional[Filter] = None
    ) -> List[Dict]:
        """Count documents per distinct value of `field`: [{"_id": value, "count": n}]."""
        raise NotImplementedError

    async def ensure_unique(self, collection: str, fields: Iterable[str]) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


@contextmanager
def _faults(operation: str, collection: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise ValidationError("Duplicate value", {"_unique": str(e.details or e)}) from e
    except (PyMongoError, OverflowError) as e:
        logger.error("store operation failed", operation=operation, collection=collection, error=str(e))
        raise StorageError(f"{operation} on {collection} failed") from e


class MongoStore(Store):
    def __init__(self, url: str, name: str, timeout_ms: int = config.DATABASE_TIMEOUT_MS):
        self.client = AsyncMongoClient(url, serverSelectionTimeoutMS=timeout_ms, tz_aware=True)
        self.db = self.client[name]

    async def find_one(self, collection, filter):
        with _faults("find_one", collection):
            return await self.db[collection].find_one(filter)

    async def find(self, collection, filter, sort=None, skip=0, limit=0):
        with _faults("find", collection):
            cursor = self.db[collection].find(filter)
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)

    async def count(self, collection, filter):
        with _faults("count", collection):
            return await self.db[collection].count_documents(filter)

    async def insert(self, collection, doc):
        with _faults("insert", collection):
            doc = {**doc}
            res = await self.db[collection].insert_one(doc)
            doc["_id"] = res.inserted_id
            return doc

    async def update_by_id(self, collection, id, patch):
        oid = to_obj_id(id)
        if oid is None:
            return None
        with _faults("update", collection):
            return await self.db[collection].find_one_and_update(
                {"_id": oid}, {"$set": patch}, return_document=ReturnDocument.AFTER
            )

    async def toggle_by_id(self, collection, id, field, extra=None):
        oid = to_obj_id(id)
        if oid is None:
            return None
        stage = {field: {"$not": [f"${field}"]}, **(extra or {})}
        with _faults("toggle", collection):
            return await self.db[collection].find_one_and_update(
                {"_id": oid}, [{"$set": stage}], return_document=ReturnDocument.AFTER
            )

    async def delete_by_id(self, collection, id):
        oid = to_obj_id(id)
        if oid is None:
            return False
        with _faults("delete", collection):
            res = await self.db[collection].delete_one({"_id": oid})
            return res.deleted_count > 0

    async def aggregate_group_by(self, collection, field, filter=None):
        pipeline = [
            {"$match": filter or {}},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]
        with _faults("aggregate", collection):
            cursor = await self.db[collection].aggregate(pipeline)
            return await cursor.to_list(length=None)

    async def ensure_unique(self, collection, fields):
        with _faults("create_index", collection):
            for f in fields:
                await self.db[collection].create_index(f, unique=True)

    async def ping(self):
        with _faults("ping", "admin"):
            await self.client.admin.command("ping")
            return True

    async def close(self):
        await self.client.close()


# In-memory store

_MISSING = object()


def _values(doc: Dict, key: str) -> List[Any]:
    """Values a filter key sees; array fields match on any element."""
    value = doc.get(key, _MISSING)
    if value is _MISSING:
        return []
    if isinstance(value, list):
        return value + [value]
    return [value]


def _compare(op: str, actual: Any, expected: Any) -> bool:
    try:
        if op == "$gt":
            return actual > expected
        if op == "$gte":
            return actual >= expected
        if op == "$lt":
            return actual < expected
        if op == "$lte":
            return actual <= expected
    except TypeError:
        return False
    raise StorageError(f"Unsupported operator {op}")


def _match_condition(doc: Dict, key: str, cond: Any) -> bool:
    values = _values(doc, key)
    if not isinstance(cond, dict) or not any(k.startswith("$") for k in cond):
        if cond is None:
            return not values or None in values
        return cond in values
    for op, expected in cond.items():
        if op == "$options":
            continue
        if op == "$eq":
            ok = expected in values
        elif op == "$ne":
            ok = expected not in values
        elif op == "$in":
            ok = any(v in expected for v in values)
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            ok = any(isinstance(v, str) and re.search(expected, v, flags) for v in values)
        else:
            ok = any(_compare(op, v, expected) for v in values)
        if not ok:
            return False
    return True


def matches(doc: Dict, filter: Filter) -> bool:
    return all(_match_condition(doc, key, cond) for key, cond in (filter or {}).items())


def _sort_key(value: Any):
    # Mongo orders missing/None before everything else
    return (0,) if value is None else (1, value)


class MemoryStore(Store):
    def __init__(self):
        self.collections: Dict[str, Dict[ObjectId, Dict]] = {}
        self.unique: Dict[str, List[str]] = {}

    def _col(self, name: str) -> Dict[ObjectId, Dict]:
        return self.collections.setdefault(name, {})

    def _check_unique(self, collection: str, doc: Dict) -> None:
        for f in self.unique.get(collection, []):
            for other in self._col(collection).values():
                if other["_id"] != doc.get("_id") and f in doc and other.get(f) == doc[f]:
                    raise ValidationError("Duplicate value", {"_unique": f})

    async def find_one(self, collection, filter):
        for doc in self._col(collection).values():
            if matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find(self, collection, filter, sort=None, skip=0, limit=0):
        docs = [d for d in self._col(collection).values() if matches(d, filter)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: _sort_key(d.get(field)), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def count(self, collection, filter):
        return sum(1 for d in self._col(collection).values() if matches(d, filter))

    async def insert(self, collection, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self._check_unique(collection, doc)
        self._col(collection)[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def update_by_id(self, collection, id, patch):
        current = self._col(collection).get(to_obj_id(id))
        if current is None:
            return None
        updated = {**current, **copy.deepcopy(patch)}
        self._check_unique(collection, updated)
        current.update(updated)
        return copy.deepcopy(current)

    async def toggle_by_id(self, collection, id, field, extra=None):
        current = self._col(collection).get(to_obj_id(id))
        if current is None:
            return None
        current[field] = not current.get(field)
        current.update(copy.deepcopy(extra or {}))
        return copy.deepcopy(current)

    async def delete_by_id(self, collection, id):
        return self._col(collection).pop(to_obj_id(id), None) is not None

    async def aggregate_group_by(self, collection, field, filter=None):
        counts: Dict[Any, int] = {}
        for doc in self._col(collection).values():
            if matches(doc, filter or {}):
                key = doc.get(field)
                counts[key] = counts.get(key, 0) + 1
        return [{"_id": k, "count": counts[k]} for k in sorted(counts, key=_sort_key)]

    async def ensure_unique(self, collection, fields):
        self.unique[collection] = list(fields)

    async def ping(self):
        return True


def create_store() -> Store:
    if config.DATABASE_URL:
        logger.info("using mongo store", database=config.DATABASE_NAME)
        return MongoStore(config.DATABASE_URL, config.DATABASE_NAME)
    logger.warning("DATABASE_URL not set, using in-memory store")
    return MemoryStore()
