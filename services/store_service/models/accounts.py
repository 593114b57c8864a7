"""Account models: customer/admin accounts with their embedded cart."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field

from libs.common.currency import Money, line_total
from libs.common.datetime_utils import Timestamp, utc_now
from services.store_service.models.base import StoreModel, new_id
from services.store_service.models.enums import AccountRole, Currency


class Address(StoreModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class ProductSnapshot(StoreModel):
    """Product data frozen into a cart entry when it was added."""

    name: str
    price: Money
    image: Optional[str] = None
    currency: Currency = Currency.EGP


class CartEntry(StoreModel):
    """One product line of an account cart. Quantity is always >= 1."""

    product_id: str
    quantity: int = Field(..., ge=1)
    product_data: ProductSnapshot
    added_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)

    @property
    def line_total(self) -> Decimal:
        return line_total(self.product_data.price, self.quantity)


class Account(StoreModel):
    """Registered account. The cart lives inside the account record."""

    id: str = Field(default_factory=new_id("user"))
    first_name: str
    last_name: str
    email: str
    password_hash: str = Field(..., repr=False)
    phone: Optional[str] = None
    role: AccountRole = AccountRole.CUSTOMER
    is_active: bool = True
    address: Optional[Address] = None

    cart: list[CartEntry] = Field(default_factory=list)
    # "<guestId>:<cartToken>:<productId>" keys of recently merged guest entries
    merged_guest_entries: list[str] = Field(default_factory=list)

    login_attempts: Optional[int] = None
    lock_until: Optional[Timestamp] = None
    last_login_at: Optional[Timestamp] = None

    version: int = 1
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now

    def cart_entry(self, product_id: str) -> Optional[CartEntry]:
        return next((e for e in self.cart if e.product_id == product_id), None)

    def to_public(self) -> dict[str, Any]:
        """Record shape handed to callers: never includes the credential hash."""
        record = self.to_record()
        record.pop("passwordHash", None)
        return record

    def __repr__(self):
        return f"<Account {self.id} {self.email} role={self.role.value}>"
