"""Flat-file JSON backend.

Each collection lives in ``<data_dir>/<collection>.json`` as
``{"<collection>": [record, ...]}``. Writes are whole-file rewrites done via
write-to-temp-then-rename, serialised in-process by one asyncio lock per
collection and across processes on the same host by an ``fcntl`` lock file.
Several hosts sharing one data directory over a network filesystem are not
supported.
"""

import asyncio
import copy
import fcntl
import json
import os
import tempfile
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from libs.common.logging import get_logger
from libs.db.base import (
    DESCENDING,
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

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Query evaluation
# ---------------------------------------------------------------------------


def _contains(value: Any, needle: str) -> bool:
    if isinstance(value, str):
        return needle in value.lower()
    if isinstance(value, list):
        return any(isinstance(v, str) and needle in v.lower() for v in value)
    return False


def matches(record: Record, query: Query) -> bool:
    """Evaluate a Query against one record the way the document store does."""
    for name, expected in query.equals.items():
        if record.get(name) != expected:
            return False

    for name, bounds in query.ranges.items():
        if bounds.is_open():
            continue
        value = record.get(name)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False
        if bounds.gte is not None and value < bounds.gte:
            return False
        if bounds.lte is not None and value > bounds.lte:
            return False

    if query.search:
        needle = query.search.lower()
        if not any(_contains(record.get(f), needle) for f in query.search_fields):
            return False

    return True


def _sort_value(value: Any) -> tuple:
    # Missing/null sorts first ascending, as in MongoDB
    if value is None:
        return (0, 0)
    return (1, value)


def sort_records(records: list[Record], keys: list[tuple[str, int]]) -> list[Record]:
    """Multi-key sort via successive stable sorts, last key first."""
    ordered = list(records)
    for name, direction in reversed(keys):
        ordered.sort(
            key=lambda r: _sort_value(r.get(name)), reverse=direction == DESCENDING
        )
    return ordered


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class FlatFileStore(StorageBackend):
    """Stores every collection as a JSON document on local disk."""

    name = "file"

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._locks = {collection: asyncio.Lock() for collection in Collection}

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        try:
            await asyncio.to_thread(self.data_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(
                f"data directory {self.data_dir} is not usable: {exc}"
            ) from exc
        logger.info("Flat-file store ready at %s", self.data_dir)

    async def close(self) -> None:
        return None

    def describe(self) -> dict[str, Any]:
        return {
            "type": "File-based JSON",
            "connected": True,
            "details": str(self.data_dir),
        }

    # -- file primitives (run in worker threads) -----------------------------

    def _path(self, collection: Collection) -> Path:
        return self.data_dir / f"{collection.value}.json"

    @contextmanager
    def _file_lock(self, collection: Collection) -> Iterator[None]:
        """Exclusive cross-process lock for one collection."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.data_dir / f".{collection.value}.lock"
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self, collection: Collection) -> list[Record]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise StorageUnavailable(
                f"malformed JSON in {path}: {exc}", collection=collection.value
            ) from exc
        except OSError as exc:
            raise StorageUnavailable(
                f"cannot read {path}: {exc}", collection=collection.value
            ) from exc

        records = data.get(collection.value) if isinstance(data, dict) else None
        if not isinstance(records, list) or not all(
            isinstance(r, dict) for r in records
        ):
            raise StorageUnavailable(
                f"{path} does not hold a '{collection.value}' record list",
                collection=collection.value,
            )
        return records

    def _save(self, collection: Collection, records: list[Record]) -> None:
        """Save a collection atomically."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{collection.value}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({collection.value: records}, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self._path(collection))
        except (OSError, TypeError, ValueError) as exc:
            # TypeError/ValueError: a value json cannot encode
            raise StorageUnavailable(
                f"cannot write {self._path(collection)}: {exc}",
                collection=collection.value,
            ) from exc
        finally:
            with suppress(FileNotFoundError):
                os.unlink(temp_path)

    def _mutate(
        self, collection: Collection, mutation: Callable[[list[Record]], T]
    ) -> T:
        """Load, mutate and save under the file lock. Errors leave the file untouched."""
        with self._file_lock(collection):
            records = self._load(collection)
            result = mutation(records)
            self._save(collection, records)
            return result

    async def _read(self, collection: Collection) -> list[Record]:
        return await asyncio.to_thread(self._load, collection)

    async def _write(
        self, collection: Collection, mutation: Callable[[list[Record]], T]
    ) -> T:
        async with self._locks[collection]:
            return await asyncio.to_thread(self._mutate, collection, mutation)

    @staticmethod
    def _index_of(records: list[Record], record_id: str) -> Optional[int]:
        for idx, record in enumerate(records):
            if record.get("id") == record_id:
                return idx
        return None

    @staticmethod
    def _check_unique(
        collection: Collection,
        records: list[Record],
        candidate: Record,
        skip_index: Optional[int] = None,
    ) -> None:
        for field_name in UNIQUE_FIELDS[collection]:
            value = candidate.get(field_name)
            if value is None:
                continue
            for idx, existing in enumerate(records):
                if idx != skip_index and existing.get(field_name) == value:
                    raise ConstraintViolation(collection.value, field_name, value)

    # -- reads ---------------------------------------------------------------

    async def get(self, collection: Collection, record_id: str) -> Optional[Record]:
        return await self.find_one_by(collection, "id", record_id)

    async def find_one_by(
        self, collection: Collection, field_name: str, value: Any
    ) -> Optional[Record]:
        for record in await self._read(collection):
            if record.get(field_name) == value:
                return record
        return None

    async def find(self, collection: Collection, query: Query) -> QueryResult:
        matched = [r for r in await self._read(collection) if matches(r, query)]
        ordered = sort_records(matched, query.sort_keys())
        start = max(query.skip, 0)
        end = start + query.limit if query.limit else None
        return QueryResult(records=ordered[start:end], total=len(matched))

    async def distinct(self, collection: Collection, field_name: str) -> list[Any]:
        values: list[Any] = []
        for record in await self._read(collection):
            value = record.get(field_name)
            if value is not None and value not in values:
                values.append(value)
        return values

    # -- writes --------------------------------------------------------------

    async def insert(self, collection: Collection, record: Record) -> Record:
        new_record = copy.deepcopy(record)
        new_record.setdefault(VERSION_FIELD, 1)

        def mutation(records: list[Record]) -> Record:
            self._check_unique(collection, records, new_record)
            records.append(new_record)
            return copy.deepcopy(new_record)

        return await self._write(collection, mutation)

    async def update(
        self,
        collection: Collection,
        record_id: str,
        changes: Record,
        *,
        unset: Iterable[str] = (),
        expected_version: Optional[int] = None,
    ) -> Record:
        set_fields = copy.deepcopy(strip_bookkeeping(changes))
        unset_fields = [f for f in unset if f not in set_fields]

        def mutation(records: list[Record]) -> Record:
            idx = self._index_of(records, record_id)
            if idx is None:
                raise RecordNotFound(collection.value, record_id)
            current = records[idx]
            current_version = current.get(VERSION_FIELD, 0)
            if expected_version is not None and current_version != expected_version:
                raise ConflictError(collection.value, record_id, expected_version)

            updated = {**current, **set_fields}
            for field_name in unset_fields:
                updated.pop(field_name, None)
            updated[VERSION_FIELD] = current_version + 1

            self._check_unique(collection, records, updated, skip_index=idx)
            records[idx] = updated
            return copy.deepcopy(updated)

        return await self._write(collection, mutation)

    async def delete(self, collection: Collection, record_id: str) -> Record:
        def mutation(records: list[Record]) -> Record:
            idx = self._index_of(records, record_id)
            if idx is None:
                raise RecordNotFound(collection.value, record_id)
            return records.pop(idx)

        return await self._write(collection, mutation)
