import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from libs.common.config import Settings
from libs.db.document_store import DocumentStore
from libs.db.flat_file_store import FlatFileStore
from services.store_service.gateway import PersistenceGateway
from services.store_service.services import CartService, OrderService
from tests.factories import FakeClock


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the developer's .env and environment defaults."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        STORAGE_BACKEND="file",
        MONGODB_URI=None,
        DATA_DIR=tmp_path / "database",
        BCRYPT_ROUNDS=10,
        CONFLICT_RETRY_ATTEMPTS=5,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def file_store(settings):
    store = FlatFileStore(settings.DATA_DIR)
    await store.connect()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def document_store():
    """Document store running against an in-process mongomock database."""
    client = AsyncMongoMockClient()
    store = DocumentStore.from_database(client["storefront_test"])
    await store.connect()
    yield store


@pytest_asyncio.fixture(params=["file", "document"])
async def backend(request, settings):
    """Every test using this fixture runs once per storage backend."""
    if request.param == "file":
        store = FlatFileStore(settings.DATA_DIR)
    else:
        store = DocumentStore.from_database(AsyncMongoMockClient()["storefront_test"])
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def gateway(backend, settings, clock) -> PersistenceGateway:
    return PersistenceGateway(backend, settings, clock=clock)


@pytest.fixture
def catalog(gateway):
    return gateway.catalog


@pytest.fixture
def accounts(gateway):
    return gateway.accounts


@pytest.fixture
def carts(gateway) -> CartService:
    return CartService(gateway)


@pytest.fixture
def orders(gateway, carts) -> OrderService:
    return OrderService(gateway, cart_service=carts)
