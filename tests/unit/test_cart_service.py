"""Unit tests for CartService, including the guest-cart merge protocol."""

from decimal import Decimal

import pytest

from libs.db.base import Collection
from libs.db.errors import ConflictError
from services.store_service.errors import NotFound, ProductNotFound, ValidationError
from services.store_service.services import cart_service
from tests.factories import AccountFactory, ProductFactory


async def _product(catalog, **overrides):
    return await catalog.create_product(ProductFactory.create(**overrides))


# ---------------------------------------------------------------------------
# add / update / remove / clear
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_twice_increments_quantity(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=10.00)

    await carts.add_item(account.id, product.id, 1)
    cart = await carts.add_item(account.id, product.id, 2)

    assert len(cart.entries) == 1
    assert cart.entries[0].quantity == 3
    assert cart.count == 3
    assert cart.total == Decimal("30.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_snapshots_live_product(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=12.50, main_image="/img/main.png")

    cart = await carts.add_item(account.id, product.id)

    snapshot = cart.entries[0].product_data
    assert snapshot.name == product.name
    assert snapshot.price == Decimal("12.50")
    assert snapshot.image == "/img/main.png"
    assert snapshot.currency.value == "EGP"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_complete_hint_skips_catalog_lookup(carts, accounts):
    account = await accounts.create(AccountFactory.draft())

    cart = await carts.add_item(
        account.id,
        "no-such-product",
        2,
        {"name": "Breadboard", "price": 4.25, "currency": "USD"},
    )

    assert cart.total == Decimal("8.50")
    assert cart.entries[0].product_data.currency.value == "USD"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_incomplete_hint_for_vanished_product_fails(carts, accounts):
    account = await accounts.create(AccountFactory.draft())

    with pytest.raises(ProductNotFound):
        await carts.add_item(account.id, "vanished", 1, {"name": "Old name"})

    assert (await carts.get_cart(account.id)).entries == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cart_total_uses_snapshot_price(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=10.00)
    await carts.add_item(account.id, product.id, 2)

    await catalog.update_product(product.id, {"price": 99.99})
    cart = await carts.get_cart(account.id)

    assert cart.total == Decimal("20.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_rejects_non_positive_quantity(carts, accounts):
    account = await accounts.create(AccountFactory.draft())
    with pytest.raises(ValidationError):
        await carts.add_item(account.id, "p1", 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_quantity_overwrites(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=5.00)
    await carts.add_item(account.id, product.id, 4)

    cart = await carts.update_quantity(account.id, product.id, 1)

    assert cart.entries[0].quantity == 1
    assert cart.total == Decimal("5.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_quantity_zero_equals_remove(carts, catalog, accounts):
    first = await accounts.create(AccountFactory.draft())
    second = await accounts.create(AccountFactory.draft())
    keep = await _product(catalog, price=1.00)
    drop = await _product(catalog, price=2.00)
    for account in (first, second):
        await carts.add_item(account.id, keep.id, 1)
        await carts.add_item(account.id, drop.id, 3)

    via_update = await carts.update_quantity(first.id, drop.id, 0)
    via_remove = await carts.remove_item(second.id, drop.id)

    assert [e.product_id for e in via_update.entries] == [keep.id]
    assert [e.product_id for e in via_remove.entries] == [keep.id]
    assert via_update.total == via_remove.total == Decimal("1.00")
    assert via_update.count == via_remove.count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_quantity_for_absent_entry_raises(carts, accounts):
    account = await accounts.create(AccountFactory.draft())
    with pytest.raises(NotFound):
        await carts.update_quantity(account.id, "not-in-cart", 2)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_remove_absent_item_is_noop(carts, accounts):
    account = await accounts.create(AccountFactory.draft())

    cart = await carts.remove_item(account.id, "not-in-cart")

    assert cart.entries == []
    assert (await accounts.find_by_id(account.id)).version == account.version


@pytest.mark.asyncio
@pytest.mark.unit
async def test_clear_empties_cart(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog)
    await carts.add_item(account.id, product.id, 2)

    cart = await carts.clear(account.id)

    assert cart.entries == []
    assert cart.total == Decimal("0.00")
    assert cart.count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cart_of_unknown_account_raises_not_found(carts):
    with pytest.raises(NotFound):
        await carts.get_cart("user_missing")


# ---------------------------------------------------------------------------
# Lost updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stale_cart_write_conflicts(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog)

    stale = await accounts.find_by_id(account.id)
    await carts.add_item(account.id, product.id, 1)

    with pytest.raises(ConflictError):
        await accounts.save_cart(stale, [])

    assert (await carts.get_cart(account.id)).count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_item_retries_after_concurrent_write(
    carts, catalog, accounts, gateway
):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=2.00)

    original_update = gateway.backend.update
    interfered = False

    async def racing_update(collection, record_id, changes, **kwargs):
        # Another request bumps the account version just before our first write
        nonlocal interfered
        if collection == Collection.ACCOUNTS and not interfered:
            interfered = True
            await original_update(collection, record_id, {"phone": "+201001112223"})
        return await original_update(collection, record_id, changes, **kwargs)

    gateway.backend.update = racing_update
    cart = await carts.add_item(account.id, product.id, 2)

    assert interfered
    assert cart.count == 2
    refreshed = await accounts.find_by_id(account.id)
    assert refreshed.phone == "+201001112223"
    assert refreshed.version == account.version + 2


# ---------------------------------------------------------------------------
# Guest cart merge
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_merge_combines_quantities(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog, price=3.00)
    await carts.add_item(account.id, product.id, 1)

    report = await carts.merge_guest_cart(
        account.id,
        {"guest_id": "guest-1", "entries": [{"product_id": product.id, "quantity": 2}]},
    )

    assert report.merged == [product.id]
    assert report.ok
    cart = await carts.get_cart(account.id)
    assert cart.entries[0].quantity == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_merge_collects_failures_and_continues(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    first = await _product(catalog)
    second = await _product(catalog)

    report = await carts.merge_guest_cart(
        account.id,
        {
            "guest_id": "guest-2",
            "entries": [
                {"product_id": first.id, "quantity": 1},
                {"product_id": "vanished", "quantity": 1},
                {"product_id": second.id, "quantity": 0},
                {"product_id": second.id, "quantity": 2},
            ],
        },
    )

    assert report.merged == [first.id, second.id]
    assert [(f.product_id, f.error) for f in report.failures] == [
        ("vanished", "ProductNotFound"),
        (second.id, "ValidationError"),
    ]
    cart = await carts.get_cart(account.id)
    assert cart.count == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replayed_merge_does_not_double_quantities(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog)
    guest_cart = {
        "guest_id": "guest-3",
        "entries": [{"product_id": product.id, "quantity": 2}],
    }

    await carts.merge_guest_cart(account.id, guest_cart)
    report = await carts.merge_guest_cart(account.id, guest_cart)

    assert report.merged == []
    assert report.skipped == [product.id]
    assert (await carts.get_cart(account.id)).count == 2

    # A different guest cart for the same product still merges
    other = await carts.merge_guest_cart(
        account.id, {**guest_cart, "guest_id": "guest-4"}
    )
    assert other.merged == [product.id]
    assert (await carts.get_cart(account.id)).count == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_merge_into_unknown_account_raises(carts):
    with pytest.raises(NotFound):
        await carts.merge_guest_cart(
            "user_missing", {"guest_id": "g", "entries": []}
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_later_guest_cart_from_same_visitor_still_merges(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog)

    await carts.merge_guest_cart(
        account.id,
        {"guest_id": "visitor-1", "entries": [{"product_id": product.id, "quantity": 1}]},
    )
    report = await carts.merge_guest_cart(
        account.id,
        {"guest_id": "visitor-1", "entries": [{"product_id": product.id, "quantity": 2}]},
    )

    assert report.merged == [product.id]
    assert (await carts.get_cart(account.id)).count == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cart_id_identifies_the_guest_cart(carts, catalog, accounts):
    account = await accounts.create(AccountFactory.draft())
    product = await _product(catalog)
    entries = [{"product_id": product.id, "quantity": 1}]

    await carts.merge_guest_cart(
        account.id, {"guest_id": "visitor-2", "cart_id": "c1", "entries": entries}
    )
    replay = await carts.merge_guest_cart(
        account.id, {"guest_id": "visitor-2", "cart_id": "c1", "entries": entries}
    )
    rotated = await carts.merge_guest_cart(
        account.id, {"guest_id": "visitor-2", "cart_id": "c2", "entries": entries}
    )

    assert replay.skipped == [product.id]
    assert rotated.merged == [product.id]
    assert (await carts.get_cart(account.id)).count == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stored_merge_keys_are_bounded(carts, catalog, accounts, monkeypatch):
    monkeypatch.setattr(cart_service, "MAX_MERGED_KEYS", 2)
    account = await accounts.create(AccountFactory.draft())
    products = [await _product(catalog) for _ in range(3)]

    await carts.merge_guest_cart(
        account.id,
        {
            "guest_id": "visitor-3",
            "entries": [{"product_id": p.id, "quantity": 1} for p in products],
        },
    )

    refreshed = await accounts.find_by_id(account.id)
    assert len(refreshed.merged_guest_entries) == 2
    assert refreshed.merged_guest_entries[-1].endswith(products[-1].id)
