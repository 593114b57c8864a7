"""Cart operations on the cart embedded in each account.

Every mutation is a read-modify-write of the account record, written back
conditionally on the version it was read at and retried on conflict, so
concurrent edits to one cart never silently drop each other.
"""

from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from libs.common.currency import sum_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.concurrency import run_with_retry
from libs.db.errors import StorageError
from services.store_service.errors import NotFound, StoreError, ValidationError
from services.store_service.models import Account, CartEntry, ProductSnapshot
from services.store_service.schemas import (
    CartView,
    GuestCart,
    MergeFailure,
    MergeReport,
    SnapshotHint,
)

logger = get_logger(__name__)


def build_cart_view(account: Account) -> CartView:
    """Totals come from the stored snapshots, never from live prices."""
    return CartView(
        entries=list(account.cart),
        total=sum_money(entry.line_total for entry in account.cart),
        count=sum(entry.quantity for entry in account.cart),
    )


# Merge keys kept per account, oldest dropped first
MAX_MERGED_KEYS = 100


def merge_key(merge_token: str, product_id: str) -> str:
    return f"{merge_token}:{product_id}"


class CartService:
    def __init__(self, gateway):
        self._gateway = gateway
        self._accounts = gateway.accounts
        self._catalog = gateway.catalog
        self._settings = gateway.settings

    async def _retry(self, func):
        return await run_with_retry(
            func, attempts=self._settings.CONFLICT_RETRY_ATTEMPTS
        )

    async def _snapshot(
        self, product_id: str, hint: Optional[SnapshotHint]
    ) -> ProductSnapshot:
        """Use the caller's product data when complete, else fill it from the catalog."""
        if hint is not None and hint.is_complete():
            return ProductSnapshot(
                name=hint.name,
                price=hint.price,
                image=hint.image,
                currency=hint.currency or self._settings.DEFAULT_CURRENCY,
            )

        product = await self._catalog.find_by_id(product_id)  # ProductNotFound
        hint = hint or SnapshotHint()
        return ProductSnapshot(
            name=hint.name if hint.name is not None else product.name,
            price=hint.price if hint.price is not None else product.price,
            image=hint.image if hint.image is not None else product.primary_image,
            currency=hint.currency or product.currency,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_cart(self, account_id: str) -> CartView:
        account = await self._accounts.find_by_id(account_id)
        return build_cart_view(account)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_item(
        self,
        account_id: str,
        product_id: str,
        quantity: int = 1,
        snapshot_hint: Optional[Union[SnapshotHint, dict]] = None,
    ) -> CartView:
        """Add ``quantity`` of a product; an existing entry is incremented."""
        if quantity < 1:
            raise ValidationError(["quantity: must be at least 1"])
        if isinstance(snapshot_hint, dict):
            try:
                snapshot_hint = SnapshotHint.model_validate(snapshot_hint)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        snapshot = await self._snapshot(product_id, snapshot_hint)

        async def write() -> Account:
            account = await self._accounts.find_by_id(account_id)
            entries = _add_to_entries(account.cart, product_id, quantity, snapshot)
            return await self._accounts.save_cart(account, entries)

        account = await self._retry(write)
        logger.info("Added %d x %s to cart of %s", quantity, product_id, account_id)
        return build_cart_view(account)

    async def update_quantity(
        self, account_id: str, product_id: str, quantity: int
    ) -> CartView:
        """Replace an entry's quantity; zero or less removes the entry."""
        if quantity <= 0:
            return await self.remove_item(account_id, product_id)

        async def write() -> Account:
            account = await self._accounts.find_by_id(account_id)
            if account.cart_entry(product_id) is None:
                raise NotFound(f"Product {product_id} is not in the cart")
            now = utc_now()
            entries = [
                entry.model_copy(update={"quantity": quantity, "updated_at": now})
                if entry.product_id == product_id
                else entry
                for entry in account.cart
            ]
            return await self._accounts.save_cart(account, entries)

        return build_cart_view(await self._retry(write))

    async def remove_item(self, account_id: str, product_id: str) -> CartView:
        """Idempotent: removing an absent product leaves the cart as is."""

        async def write() -> Account:
            account = await self._accounts.find_by_id(account_id)
            if account.cart_entry(product_id) is None:
                return account
            entries = [e for e in account.cart if e.product_id != product_id]
            return await self._accounts.save_cart(account, entries)

        return build_cart_view(await self._retry(write))

    async def clear(self, account_id: str) -> CartView:
        async def write() -> Account:
            account = await self._accounts.find_by_id(account_id)
            if not account.cart:
                return account
            return await self._accounts.save_cart(account, [])

        return build_cart_view(await self._retry(write))

    # ------------------------------------------------------------------
    # Guest cart merge
    # ------------------------------------------------------------------

    async def merge_guest_cart(
        self, account_id: str, guest_cart: Union[GuestCart, dict]
    ) -> MergeReport:
        """
        Replay a guest cart into the account cart, one entry at a time.

        Quantities combine with what the account already holds. Each entry is
        its own unit of work: a failing entry is reported and the rest still
        run. Entries already merged from the same guest cart are skipped, so
        replaying a merge never doubles quantities.
        """
        if isinstance(guest_cart, dict):
            try:
                guest_cart = GuestCart.model_validate(guest_cart)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        await self._accounts.find_by_id(account_id)  # NotFound for unknown accounts

        report = MergeReport()
        for guest_entry in guest_cart.entries:
            key = merge_key(guest_cart.merge_token, guest_entry.product_id)
            try:
                merged = await self._merge_entry(account_id, key, guest_entry)
            except (StoreError, StorageError) as exc:
                logger.warning(
                    "Guest cart merge failed for %s into %s: %s",
                    guest_entry.product_id,
                    account_id,
                    exc,
                )
                report.failures.append(
                    MergeFailure(
                        product_id=guest_entry.product_id,
                        error=type(exc).__name__,
                        message=getattr(exc, "message", str(exc)),
                    )
                )
                continue
            (report.merged if merged else report.skipped).append(guest_entry.product_id)

        logger.info(
            "Merged guest cart %s into %s: %d merged, %d skipped, %d failed",
            guest_cart.guest_id,
            account_id,
            len(report.merged),
            len(report.skipped),
            len(report.failures),
        )
        return report

    async def _merge_entry(self, account_id: str, key: str, guest_entry) -> bool:
        """Merge one guest entry. Returns False when it was merged before."""
        if guest_entry.quantity < 1:
            raise ValidationError(["quantity: must be at least 1"])

        account = await self._accounts.find_by_id(account_id)
        if key in account.merged_guest_entries:
            return False

        snapshot = await self._snapshot(guest_entry.product_id, guest_entry.product_data)

        async def write() -> bool:
            current = await self._accounts.find_by_id(account_id)
            if key in current.merged_guest_entries:
                return False
            entries = _add_to_entries(
                current.cart, guest_entry.product_id, guest_entry.quantity, snapshot
            )
            merged_keys = [*current.merged_guest_entries, key][-MAX_MERGED_KEYS:]
            await self._accounts.save_cart(current, entries, merged_keys=merged_keys)
            return True

        return await self._retry(write)


def _add_to_entries(
    entries: list[CartEntry],
    product_id: str,
    quantity: int,
    snapshot: ProductSnapshot,
) -> list[CartEntry]:
    now = utc_now()
    updated = []
    found = False
    for entry in entries:
        if entry.product_id == product_id:
            entry = entry.model_copy(
                update={"quantity": entry.quantity + quantity, "updated_at": now}
            )
            found = True
        updated.append(entry)
    if not found:
        updated.append(
            CartEntry(
                product_id=product_id,
                quantity=quantity,
                product_data=snapshot,
                added_at=now,
                updated_at=now,
            )
        )
    return updated
