"""Both storage backends must produce structurally identical results.

The same scenario runs against the flat-file store and the document store;
outputs are compared after dropping generated values (ids, order numbers,
timestamps) that legitimately differ between runs.
"""

import pytest
from mongomock_motor import AsyncMongoMockClient

from libs.db.document_store import DocumentStore
from libs.db.flat_file_store import FlatFileStore
from services.store_service.app.main import build_store
from services.store_service.gateway import PersistenceGateway
from services.store_service.schemas import Pagination, ProductFilter, ProductSort
from tests.factories import (
    AccountFactory,
    FakeClock,
    OrderDraftFactory,
    ProductFactory,
    actor_for,
    admin_actor,
)

VOLATILE_KEYS = {
    "id",
    "userId",
    "orderNumber",
    "email",
    "createdAt",
    "updatedAt",
    "addedAt",
    "timestamp",
    "actor",
    "completedAt",
    "cancelledAt",
    "passwordHash",
}


def normalise(value):
    if isinstance(value, dict):
        return {k: normalise(v) for k, v in value.items() if k not in VOLATILE_KEYS}
    if isinstance(value, list):
        return [normalise(v) for v in value]
    return value


async def run_scenario(backend, settings) -> dict:
    """Exercise every gateway-facing operation and collect the outputs."""
    await backend.connect()
    store = build_store(PersistenceGateway(backend, settings, clock=FakeClock()))
    out = {}

    for idx, (name, category, price, in_stock) in enumerate(
        [
            ("Arduino Nano", "Microcontrollers", 180.0, True),
            ("Soil Moisture Sensor", "Sensors", 35.5, True),
            ("PIR Motion Sensor", "Sensors", 55.0, False),
            ("Stepper Motor", "Motors", 210.0, True),
        ]
    ):
        await store.catalog.create_product(
            ProductFactory.create(
                id=f"product-{idx}",
                name=name,
                category=category,
                price=price,
                in_stock=in_stock,
                tags=[category.lower()],
            )
        )

    pagination = Pagination(page=1, limit=2)
    out["sensors"] = (
        await store.catalog.find(
            ProductFilter(category="sensors"), pagination, ProductSort(sort_by="price")
        )
    ).model_dump(mode="json", by_alias=True)
    out["price_range"] = sorted(
        p.id for p in (await store.catalog.find(ProductFilter(min_price=50))).items
    )
    out["search"] = sorted(p.id for p in await store.catalog.search("SENSOR"))
    out["categories"] = await store.catalog.list_categories()

    account = await store.accounts.create(AccountFactory.draft())
    actor = actor_for(account)
    await store.carts.add_item(account.id, "product-0", 1)
    await store.carts.add_item(account.id, "product-0", 2)
    await store.carts.add_item(account.id, "product-1", 1)
    await store.carts.update_quantity(account.id, "product-1", 4)
    out["merge"] = (
        await store.carts.merge_guest_cart(
            account.id,
            {
                "guest_id": "g1",
                "entries": [
                    {"product_id": "product-3", "quantity": 1},
                    {"product_id": "ghost", "quantity": 1},
                ],
            },
        )
    ).model_dump(mode="json", by_alias=True)
    out["cart"] = (await store.carts.get_cart(account.id)).model_dump(
        mode="json", by_alias=True
    )

    order = await store.orders.checkout_cart(
        actor, OrderDraftFactory.checkout(shipping=25)
    )
    await store.orders.set_status(order.id, "confirmed", admin_actor())
    cancelled = await store.orders.cancel(order.id, actor)
    out["order"] = cancelled.to_record()
    out["orders_page"] = (await store.orders.list_orders(actor)).model_dump(
        mode="json", by_alias=True
    )
    out["account"] = (await store.accounts.find_by_id(account.id)).to_public()

    await store.close()
    return normalise(out)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_backends_produce_identical_results(tmp_path, settings):
    file_result = await run_scenario(FlatFileStore(tmp_path / "files"), settings)
    document_result = await run_scenario(
        DocumentStore.from_database(AsyncMongoMockClient()["parity"]), settings
    )

    assert file_result == document_result
    # Sanity-check the scenario itself
    assert file_result["cart"]["count"] == 8
    assert file_result["order"]["status"] == "cancelled"
    assert file_result["order"]["pricing"]["total"] == 917.0
    assert file_result["merge"]["failures"][0]["productId"] == "ghost"
