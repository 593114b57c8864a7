"""Store commerce models: orders, their items and status history."""

import random
import string
from typing import Optional

from pydantic import ConfigDict, EmailStr, Field

from libs.common.currency import ZERO, Money
from libs.common.datetime_utils import Timestamp, utc_now
from services.store_service.models.base import StoreModel, new_id
from services.store_service.models.enums import (
    Currency,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)


class CustomerInfo(StoreModel):
    """Contact details captured at checkout."""

    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: EmailStr
    phone: Optional[str] = None


class OrderAddress(StoreModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    country: str = Field(..., min_length=1)
    zip_code: Optional[str] = None
    phone: Optional[str] = None


class OrderItem(StoreModel):
    """Order line item (snapshot at order time, never repriced)."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: str
    price: Money
    quantity: int = Field(..., ge=1)
    line_total: Money
    image: Optional[str] = None


class Pricing(StoreModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Money
    tax: Money = ZERO
    shipping: Money = ZERO
    discount: Money = ZERO
    total: Money


class StatusHistoryEntry(StoreModel):
    """One immutable entry of an order's append-only status log."""

    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    timestamp: Timestamp = Field(default_factory=utc_now)
    note: Optional[str] = None
    actor: Optional[str] = None


class Order(StoreModel):
    """Orders. Items and pricing are fixed at creation; status changes only
    through the transition engine."""

    id: str = Field(default_factory=new_id("order"))
    order_number: str
    user_id: Optional[str] = None

    customer_info: CustomerInfo
    items: tuple[OrderItem, ...]
    total_amount: Money
    pricing: Pricing
    currency: Currency = Currency.EGP

    status: OrderStatus = OrderStatus.PENDING
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING

    shipping_address: OrderAddress
    billing_address: Optional[OrderAddress] = None
    notes: Optional[str] = None
    status_history: tuple[StatusHistoryEntry, ...] = ()

    completed_at: Optional[Timestamp] = None
    cancelled_at: Optional[Timestamp] = None

    version: int = 1
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)

    @staticmethod
    def generate_order_number(prefix: str = "HOT") -> str:
        """Generate an order number like HOT-84213377-K3F9Q."""
        digits = str(int(utc_now().timestamp() * 1000))[-8:]
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=5)
        )
        return f"{prefix}-{digits}-{random_part}"

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status.value}>"
