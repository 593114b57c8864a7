"""MongoDB backend.

Records are stored with the same camelCase fields the flat-file backend
uses. MongoDB's own ``_id`` is never exposed: every read projects it away so
both backends hand back identical dicts.
"""

import re
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from pymongo import ASCENDING as MONGO_ASC
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from libs.common.logging import get_logger
from libs.db.base import (
    UNIQUE_FIELDS,
    VERSION_FIELD,
    Collection,
    Query,
    QueryResult,
    Record,
    StorageBackend,
    strip_bookkeeping,
)
from libs.db.errors import (
    ConflictError,
    ConstraintViolation,
    RecordNotFound,
    StorageUnavailable,
)

logger = get_logger(__name__)

NO_MONGO_ID = {"_id": 0}


def build_filter(query: Query) -> dict[str, Any]:
    """Translate a backend-neutral Query into a MongoDB filter document."""
    flt: dict[str, Any] = dict(query.equals)

    for name, bounds in query.ranges.items():
        if bounds.is_open():
            continue
        condition: dict[str, Any] = {}
        if bounds.gte is not None:
            condition["$gte"] = bounds.gte
        if bounds.lte is not None:
            condition["$lte"] = bounds.lte
        flt[name] = condition

    if query.search and query.search_fields:
        pattern = re.escape(query.search)
        flt["$or"] = [
            {name: {"$regex": pattern, "$options": "i"}}
            for name in query.search_fields
        ]

    return flt


class DocumentStore(StorageBackend):
    """Stores each collection as a MongoDB collection of the same name."""

    name = "document"

    def __init__(
        self,
        uri: Optional[str] = None,
        database_name: str = "storefront",
        *,
        timeout_ms: int = 3000,
    ):
        self.uri = uri
        self.database_name = database_name
        self.timeout_ms = timeout_ms
        self._client: Optional[AsyncMongoClient] = None
        self._db = None
        self._connected = False

    @classmethod
    def from_database(cls, database) -> "DocumentStore":
        """Wrap an already-open database handle (used by tests and tooling)."""
        store = cls(database_name=getattr(database, "name", "storefront"))
        store._db = database
        store._connected = True
        return store

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        if self._db is not None:
            await self.ensure_indexes()
            return
        if not self.uri:
            raise StorageUnavailable("MONGODB_URI is not configured")

        try:
            self._client = AsyncMongoClient(
                self.uri, serverSelectionTimeoutMS=self.timeout_ms
            )
            await self._client.admin.command("ping")
            self._db = self._client[self.database_name]
            await self.ensure_indexes()
        except PyMongoError as exc:
            await self.close()
            raise StorageUnavailable(f"MongoDB connection failed: {exc}") from exc

        self._connected = True
        logger.info("Connected to MongoDB database %s", self.database_name)

    async def ensure_indexes(self) -> None:
        with self._translate_errors(None):
            for collection, fields in UNIQUE_FIELDS.items():
                coll = self._db[collection.value]
                for field_name in fields:
                    await coll.create_index([(field_name, MONGO_ASC)], unique=True)
            await self._db[Collection.PRODUCTS.value].create_index(
                [("categorySlug", MONGO_ASC)]
            )
            await self._db[Collection.ORDERS.value].create_index(
                [("userId", MONGO_ASC), ("createdAt", MONGO_ASC)]
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._db = None
        self._connected = False

    def describe(self) -> dict[str, Any]:
        return {
            "type": "MongoDB",
            "connected": self._connected,
            "details": {"database": self.database_name},
        }

    # -- helpers -------------------------------------------------------------

    def _collection(self, collection: Collection):
        if self._db is None:
            raise StorageUnavailable("document store is not connected")
        return self._db[collection.value]

    @contextmanager
    def _translate_errors(self, collection: Optional[Collection]) -> Iterator[None]:
        name = collection.value if collection else None
        try:
            yield
        except DuplicateKeyError:
            raise
        except PyMongoError as exc:
            raise StorageUnavailable(
                f"MongoDB operation failed: {exc}", collection=name
            ) from exc

    async def _duplicate_key(
        self,
        collection: Collection,
        exc: DuplicateKeyError,
        record: Record,
        exclude_id: Optional[str] = None,
    ) -> tuple[str, Any]:
        """Name the unique field a failed write collided on."""
        key_value = (exc.details or {}).get("keyValue") or {}
        if key_value:
            return next(iter(key_value.items()))
        # No keyValue in the error: look for the colliding record instead
        coll = self._collection(collection)
        with self._translate_errors(collection):
            for field_name in UNIQUE_FIELDS[collection]:
                value = record.get(field_name)
                if value is None:
                    continue
                flt: dict[str, Any] = {field_name: value}
                if exclude_id is not None:
                    flt["id"] = {"$ne": exclude_id}
                if await coll.find_one(flt, {"_id": 1}) is not None:
                    return field_name, value
        return "id", record.get("id")

    # -- reads ---------------------------------------------------------------

    async def get(self, collection: Collection, record_id: str) -> Optional[Record]:
        return await self.find_one_by(collection, "id", record_id)

    async def find_one_by(
        self, collection: Collection, field_name: str, value: Any
    ) -> Optional[Record]:
        coll = self._collection(collection)
        with self._translate_errors(collection):
            return await coll.find_one({field_name: value}, NO_MONGO_ID)

    async def find(self, collection: Collection, query: Query) -> QueryResult:
        coll = self._collection(collection)
        flt = build_filter(query)
        with self._translate_errors(collection):
            cursor = coll.find(
                flt,
                NO_MONGO_ID,
                sort=query.sort_keys(),
                skip=max(query.skip, 0),
                limit=query.limit or 0,
            )
            records = await cursor.to_list(length=None)
            total = await coll.count_documents(flt)
        return QueryResult(records=records, total=total)

    async def distinct(self, collection: Collection, field_name: str) -> list[Any]:
        coll = self._collection(collection)
        with self._translate_errors(collection):
            values = await coll.distinct(field_name)
        return [v for v in values if v is not None]

    # -- writes --------------------------------------------------------------

    async def insert(self, collection: Collection, record: Record) -> Record:
        coll = self._collection(collection)
        document = dict(record)
        document.setdefault(VERSION_FIELD, 1)
        try:
            with self._translate_errors(collection):
                await coll.insert_one(document)
        except DuplicateKeyError as exc:
            field_name, value = await self._duplicate_key(collection, exc, record)
            raise ConstraintViolation(collection.value, field_name, value) from exc
        document.pop("_id", None)
        return document

    async def update(
        self,
        collection: Collection,
        record_id: str,
        changes: Record,
        *,
        unset: Iterable[str] = (),
        expected_version: Optional[int] = None,
    ) -> Record:
        coll = self._collection(collection)
        set_fields = strip_bookkeeping(changes)
        unset_fields = [f for f in unset if f not in set_fields]

        flt: dict[str, Any] = {"id": record_id}
        if expected_version is not None:
            flt[VERSION_FIELD] = expected_version

        update_doc: dict[str, Any] = {"$inc": {VERSION_FIELD: 1}}
        if set_fields:
            update_doc["$set"] = set_fields
        if unset_fields:
            update_doc["$unset"] = {f: "" for f in unset_fields}

        try:
            with self._translate_errors(collection):
                document = await coll.find_one_and_update(
                    flt, update_doc, return_document=ReturnDocument.AFTER
                )
                if document is None:
                    exists = await coll.find_one({"id": record_id}, {"_id": 1})
        except DuplicateKeyError as exc:
            field_name, value = await self._duplicate_key(
                collection, exc, set_fields, exclude_id=record_id
            )
            raise ConstraintViolation(collection.value, field_name, value) from exc

        if document is None:
            if exists is not None and expected_version is not None:
                raise ConflictError(collection.value, record_id, expected_version)
            raise RecordNotFound(collection.value, record_id)
        document.pop("_id", None)
        return document

    async def delete(self, collection: Collection, record_id: str) -> Record:
        coll = self._collection(collection)
        with self._translate_errors(collection):
            document = await coll.find_one_and_delete({"id": record_id})
        if document is None:
            raise RecordNotFound(collection.value, record_id)
        document.pop("_id", None)
        return document
