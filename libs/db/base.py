"""Storage backend contract.

Both backends persist plain JSON-compatible dicts with identical field names.
Everything above this module talks to a ``StorageBackend`` and never to a
concrete implementation.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

Record = dict[str, Any]

ASCENDING = 1
DESCENDING = -1


class Collection(str, enum.Enum):
    PRODUCTS = "products"
    ACCOUNTS = "accounts"
    ORDERS = "orders"


# Fields that must be unique within a collection. ``id`` is always first.
UNIQUE_FIELDS: dict[Collection, tuple[str, ...]] = {
    Collection.PRODUCTS: ("id",),
    Collection.ACCOUNTS: ("id", "email"),
    Collection.ORDERS: ("id", "orderNumber"),
}

# Bookkeeping fields the backends own.
VERSION_FIELD = "version"


@dataclass
class RangeFilter:
    """Inclusive numeric bounds; either side may be open."""

    gte: Optional[float] = None
    lte: Optional[float] = None

    def is_open(self) -> bool:
        return self.gte is None and self.lte is None


@dataclass
class Query:
    """Backend-neutral description of a filtered, sorted, paged read."""

    equals: dict[str, Any] = field(default_factory=dict)
    ranges: dict[str, RangeFilter] = field(default_factory=dict)
    search: Optional[str] = None
    search_fields: tuple[str, ...] = ()
    sort: list[tuple[str, int]] = field(
        default_factory=lambda: [("createdAt", DESCENDING)]
    )
    skip: int = 0
    limit: Optional[int] = None

    def sort_keys(self) -> list[tuple[str, int]]:
        """Sort spec with ``id`` appended as a deterministic tie-breaker."""
        keys = list(self.sort)
        if not any(name == "id" for name, _ in keys):
            direction = keys[-1][1] if keys else DESCENDING
            keys.append(("id", direction))
        return keys


@dataclass
class QueryResult:
    records: list[Record]
    total: int


class StorageBackend(ABC):
    """Raw CRUD over the products/accounts/orders collections."""

    name: str = "abstract"

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend; raise StorageUnavailable if it cannot serve."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def describe(self) -> dict[str, Any]:
        """Connection details for diagnostics."""

    @abstractmethod
    async def get(self, collection: Collection, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def find_one_by(
        self, collection: Collection, field_name: str, value: Any
    ) -> Optional[Record]:
        ...

    @abstractmethod
    async def find(self, collection: Collection, query: Query) -> QueryResult:
        ...

    @abstractmethod
    async def distinct(self, collection: Collection, field_name: str) -> list[Any]:
        ...

    @abstractmethod
    async def insert(self, collection: Collection, record: Record) -> Record:
        """Persist a new record; duplicate unique keys raise ConstraintViolation."""

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        record_id: str,
        changes: Record,
        *,
        unset: Iterable[str] = (),
        expected_version: Optional[int] = None,
    ) -> Record:
        """Apply top-level field changes and bump ``version``.

        With ``expected_version`` the write only happens if the stored version
        still matches; otherwise ConflictError. Missing records raise
        RecordNotFound.
        """

    @abstractmethod
    async def delete(self, collection: Collection, record_id: str) -> Record:
        """Remove and return a record; RecordNotFound if absent."""


def strip_bookkeeping(changes: Record) -> Record:
    """Drop fields callers may not set through ``update``."""
    return {k: v for k, v in changes.items() if k not in ("id", VERSION_FIELD)}
