"""Composition root for the Store core.

The transport layer (HTTP, auth) builds one ``Store`` at startup and closes
it on shutdown:

    store = await create_store()
    try:
        page = await store.catalog.find()
    finally:
        await store.close()
"""

from dataclasses import dataclass
from typing import Any, Optional

from libs.common.config import Settings, get_settings
from libs.common.logging import configure_logging, get_logger
from services.store_service.gateway import PersistenceGateway, init_gateway
from services.store_service.repositories import AccountRepository, CatalogRepository
from services.store_service.services import CartService, OrderService

logger = get_logger(__name__)


@dataclass
class Store:
    """Everything the transport layer needs, wired to one gateway."""

    settings: Settings
    gateway: PersistenceGateway
    carts: CartService
    orders: OrderService

    @property
    def catalog(self) -> CatalogRepository:
        return self.gateway.catalog

    @property
    def accounts(self) -> AccountRepository:
        return self.gateway.accounts

    async def health_check(self) -> dict[str, Any]:
        """Health check payload."""
        return {"status": "ok", "service": "store", **self.gateway.connection_info()}

    async def close(self) -> None:
        await self.gateway.close()


def build_store(gateway: PersistenceGateway) -> Store:
    carts = CartService(gateway)
    return Store(
        settings=gateway.settings,
        gateway=gateway,
        carts=carts,
        orders=OrderService(gateway, cart_service=carts),
    )


async def create_store(settings: Optional[Settings] = None, **gateway_options) -> Store:
    """Configure logging, pick the storage backend and wire the services."""
    settings = settings or get_settings()
    configure_logging(settings)
    gateway = await init_gateway(settings, **gateway_options)
    logger.info("Store ready (%s)", gateway.connection_info()["type"])
    return build_store(gateway)
