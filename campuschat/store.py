"""Document store backends.

The core only needs a small slice of MongoDB: single-document insert, update
and delete, point lookups, and filtered queries with sort + limit. Queries use
the MongoDB query subset below so the same repository code runs on both
backends:

* equality (``{"sender": "a"}``), which on array fields means membership
* ``{"field": {"$in": [...]}}``
* ``{"$or": [query, ...]}``

``MotorStore`` talks to MongoDB through Motor. ``MemoryStore`` keeps
everything in process and is used for development and the test suite.
"""
import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import Settings
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Query = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]


class DocumentStore(ABC):
    @abstractmethod
    async def insert(self, collection: str, document: dict) -> ObjectId:
        """Insert one document and return its ``_id``."""

    @abstractmethod
    async def find_one(self, collection: str, query: Query) -> Optional[dict]:
        ...

    @abstractmethod
    async def find(self, collection: str, query: Query, sort: Optional[Sort] = None, limit: int = 0) -> List[dict]:
        ...

    @abstractmethod
    async def update_one(self, collection: str, query: Query, changes: dict) -> int:
        """Apply ``$set`` semantics to the first match; returns the match count."""

    @abstractmethod
    async def delete_one(self, collection: str, query: Query) -> int:
        ...

    @abstractmethod
    async def ensure_unique(self, collection: str, field: str) -> None:
        ...

    async def ping(self) -> None:
        pass

    def close(self) -> None:
        pass


class MotorStore(DocumentStore):
    def __init__(self, uri: str, db_name: str, server_selection_timeout_ms: int = 5000):
        self.client = AsyncIOMotorClient(uri, serverSelectionTimeoutMS=server_selection_timeout_ms, tz_aware=True)
        self.db = self.client[db_name]

    async def insert(self, collection, document):
        result = await self.db[collection].insert_one(document)
        return result.inserted_id

    async def find_one(self, collection, query):
        return await self.db[collection].find_one(query)

    async def find(self, collection, query, sort=None, limit=0):
        cursor = self.db[collection].find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return [doc async for doc in cursor]

    async def update_one(self, collection, query, changes):
        result = await self.db[collection].update_one(query, {"$set": changes})
        return result.matched_count

    async def delete_one(self, collection, query):
        result = await self.db[collection].delete_one(query)
        return result.deleted_count

    async def ensure_unique(self, collection, field):
        await self.db[collection].create_index(field, unique=True)

    async def ping(self):
        try:
            await self.client.admin.command("ping")
        except PyMongoError as e:
            raise StoreUnavailable(f"MongoDB unreachable: {e}") from e

    def close(self):
        self.client.close()


def _contains_any(value, options) -> bool:
    if isinstance(value, list):
        return any(v in options for v in value)
    return value in options


def matches(doc: dict, query: Query) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
            continue
        if key.startswith("$"):
            raise ValueError(f"unsupported query operator {key}")
        value = doc.get(key)
        if isinstance(cond, dict):
            if set(cond) != {"$in"}:
                raise ValueError(f"unsupported condition on {key}: {cond!r}")
            if not _contains_any(value, cond["$in"]):
                return False
        elif isinstance(value, list):
            if cond not in value:
                return False
        elif value != cond:
            return False
    return True


class MemoryStore(DocumentStore):
    def __init__(self):
        self._collections: Dict[str, List[dict]] = {}
        self._unique: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    def _docs(self, collection: str) -> List[dict]:
        return self._collections.setdefault(collection, [])

    async def insert(self, collection, document):
        async with self._lock:
            docs = self._docs(collection)
            for field in self._unique.get(collection, ()):
                if field in document and any(d.get(field) == document[field] for d in docs):
                    raise DuplicateKeyError(f"duplicate key error collection: {collection} index: {field}_1")
            doc = copy.deepcopy(document)
            doc.setdefault("_id", ObjectId())
            document["_id"] = doc["_id"]
            docs.append(doc)
            return doc["_id"]

    async def find_one(self, collection, query):
        async with self._lock:
            for doc in self._docs(collection):
                if matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    async def find(self, collection, query, sort=None, limit=0):
        async with self._lock:
            found = [copy.deepcopy(d) for d in self._docs(collection) if matches(d, query)]
        # successive stable sorts, least significant key first
        for field, direction in reversed(list(sort or [])):
            found.sort(key=lambda d: d.get(field), reverse=direction < 0)
        if limit:
            found = found[:limit]
        return found

    async def update_one(self, collection, query, changes):
        async with self._lock:
            for doc in self._docs(collection):
                if matches(doc, query):
                    doc.update(copy.deepcopy(changes))
                    return 1
        return 0

    async def delete_one(self, collection, query):
        async with self._lock:
            docs = self._docs(collection)
            for i, doc in enumerate(docs):
                if matches(doc, query):
                    del docs[i]
                    return 1
        return 0

    async def ensure_unique(self, collection, field):
        self._unique.setdefault(collection, set()).add(field)


def open_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "memory":
        logger.info("using in-memory document store")
        return MemoryStore()
    logger.info("using MongoDB store db=%s", settings.mongodb_db)
    return MotorStore(settings.mongodb_uri, settings.mongodb_db)


def object_id(value) -> Optional[ObjectId]:
    """Parse a client supplied id; ``None`` when it cannot be an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None
