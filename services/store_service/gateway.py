"""Persistence gateway.

Holds the one storage backend chosen at startup and is the only object the
repositories and services talk to. Backend selection happens once, in
``init_gateway``; it is never re-evaluated per call.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Optional

from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.base import Collection, Query, QueryResult, Record, StorageBackend
from libs.db.config import build_document_store, build_flat_file_store
from libs.db.errors import ConstraintViolation, StorageUnavailable
from services.store_service.models import Order
from services.store_service.repositories import AccountRepository, CatalogRepository

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

BackendFactory = Callable[[Settings], StorageBackend]


class PersistenceGateway:
    """Backend-agnostic entry point to every domain read and write."""

    def __init__(
        self,
        backend: StorageBackend,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.settings = settings or get_settings()
        self.catalog = CatalogRepository(self, self.settings)
        self.accounts = AccountRepository(self, self.settings, clock=clock)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def connection_info(self) -> dict[str, Any]:
        return {"backend": self.backend.name, **self.backend.describe()}

    async def close(self) -> None:
        await self.backend.close()
        logger.info("Closed %s backend", self.backend.name)

    @contextmanager
    def _guard(
        self, operation: str, collection: Collection, **context
    ) -> Iterator[None]:
        """Log backend outages with the failing operation before re-raising."""
        try:
            yield
        except StorageUnavailable:
            logger.exception(
                "Storage unavailable during %s on %s (backend=%s, %s)",
                operation,
                collection.value,
                self.backend.name,
                context,
            )
            raise

    # ------------------------------------------------------------------
    # Raw collection access (used by the repositories and services)
    # ------------------------------------------------------------------

    async def get(self, collection: Collection, record_id: str) -> Optional[Record]:
        with self._guard("get", collection, record_id=record_id):
            return await self.backend.get(collection, record_id)

    async def find_one_by(
        self, collection: Collection, field_name: str, value: Any
    ) -> Optional[Record]:
        with self._guard("find_one_by", collection, field=field_name):
            return await self.backend.find_one_by(collection, field_name, value)

    async def find(self, collection: Collection, query: Query) -> QueryResult:
        with self._guard("find", collection, equals=query.equals):
            return await self.backend.find(collection, query)

    async def distinct(self, collection: Collection, field_name: str) -> list[Any]:
        with self._guard("distinct", collection, field=field_name):
            return await self.backend.distinct(collection, field_name)

    async def insert(self, collection: Collection, record: Record) -> Record:
        with self._guard("insert", collection, record_id=record.get("id")):
            return await self.backend.insert(collection, record)

    async def update(
        self,
        collection: Collection,
        record_id: str,
        changes: Record,
        *,
        unset: Iterable[str] = (),
        expected_version: Optional[int] = None,
    ) -> Record:
        with self._guard(
            "update", collection, record_id=record_id, expected_version=expected_version
        ):
            return await self.backend.update(
                collection,
                record_id,
                changes,
                unset=unset,
                expected_version=expected_version,
            )

    async def delete(self, collection: Collection, record_id: str) -> Record:
        with self._guard("delete", collection, record_id=record_id):
            return await self.backend.delete(collection, record_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def insert_order(self, order: Order) -> Order:
        """Persist a new order as one record, regenerating a colliding order number."""
        attempt = 1
        while True:
            try:
                record = await self.insert(Collection.ORDERS, order.to_record())
                return Order.from_record(record)
            except ConstraintViolation as exc:
                if exc.field != "orderNumber" or attempt >= ORDER_NUMBER_ATTEMPTS:
                    raise
                attempt += 1
                logger.info("Order number %s taken, regenerating", order.order_number)
                order = order.model_copy(
                    update={
                        "order_number": Order.generate_order_number(
                            self.settings.ORDER_NUMBER_PREFIX
                        )
                    }
                )

    async def get_order(self, order_id: str) -> Optional[Order]:
        record = await self.get(Collection.ORDERS, order_id)
        return Order.from_record(record) if record else None

    async def find_orders(self, query: Query) -> tuple[list[Order], int]:
        result = await self.find(Collection.ORDERS, query)
        return [Order.from_record(r) for r in result.records], result.total

    async def update_order(
        self, order_id: str, changes: Record, expected_version: Optional[int] = None
    ) -> Order:
        record = await self.update(
            Collection.ORDERS, order_id, changes, expected_version=expected_version
        )
        return Order.from_record(record)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


async def init_gateway(
    settings: Optional[Settings] = None,
    *,
    document_store_factory: Optional[BackendFactory] = None,
    file_store_factory: Optional[BackendFactory] = None,
) -> PersistenceGateway:
    """
    Pick the storage backend for the lifetime of the process.

    With STORAGE_BACKEND=auto the document store is tried first; if it cannot
    be reached the flat-file store is used instead. A flat-file store that
    cannot start either is fatal.
    """
    settings = settings or get_settings()
    document_store_factory = document_store_factory or build_document_store
    file_store_factory = file_store_factory or build_flat_file_store

    backend: Optional[StorageBackend] = None
    if settings.STORAGE_BACKEND == "auto":
        candidate = document_store_factory(settings)
        try:
            await candidate.connect()
            backend = candidate
        except StorageUnavailable as exc:
            logger.warning(
                "Document store unavailable (%s); falling back to flat-file storage",
                exc.message,
            )

    if backend is None:
        backend = file_store_factory(settings)
        await backend.connect()

    logger.info("Persistence gateway using %s backend", backend.name)
    return PersistenceGateway(backend, settings)
