"""Pydantic schemas for store service inputs and outputs."""

import hashlib
import json
import math
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from libs.common.currency import ZERO, Money
from services.store_service.models import (
    AccountRole,
    Address,
    CartEntry,
    Currency,
    CustomerInfo,
    OrderAddress,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

T = TypeVar("T")

PHONE_PATTERN = r"^\+?[\d\s\-()]{10,}$"


class StoreSchema(BaseModel):
    """Accepts snake_case or camelCase keys, renders camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# PAGINATION / ENVELOPES
# ============================================================================


class Pagination(StoreSchema):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class Page(StoreSchema, Generic[T]):
    """Paged result envelope, identical for every backend."""

    items: list[T]
    total: int
    page: int
    total_pages: int

    @classmethod
    def build(cls, items: list[T], total: int, pagination: Pagination) -> "Page[T]":
        return cls(
            items=items,
            total=total,
            page=pagination.page,
            total_pages=math.ceil(total / pagination.limit) if total else 0,
        )


# ============================================================================
# CATALOG SCHEMAS
# ============================================================================


class ProductFilter(StoreSchema):
    category: Optional[str] = None  # category slug
    search: Optional[str] = None
    in_stock: Optional[bool] = None
    featured: Optional[bool] = None
    best_seller: Optional[bool] = None
    min_price: Optional[Money] = Field(None, ge=0)
    max_price: Optional[Money] = Field(None, ge=0)


class ProductSort(StoreSchema):
    sort_by: Literal["createdAt", "updatedAt", "price", "name"] = "createdAt"
    descending: bool = True


class ProductCreate(StoreSchema):
    id: Optional[str] = None  # derived from the name when omitted
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    category_slug: Optional[str] = None
    description: str = ""
    short_description: Optional[str] = Field(None, max_length=500)
    price: Money = Field(..., ge=0)
    currency: Optional[Currency] = None
    in_stock: bool = True
    stock_quantity: int = Field(0, ge=0)
    featured: bool = False
    best_seller: bool = False
    images: list[str] = Field(default_factory=list)
    main_image: Optional[str] = None
    specifications: dict[str, str] = Field(default_factory=dict)
    features: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    brand: Optional[str] = None
    warranty: Optional[str] = None


class ProductUpdate(StoreSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    price: Optional[Money] = Field(None, ge=0)
    currency: Optional[Currency] = None
    in_stock: Optional[bool] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    best_seller: Optional[bool] = None
    images: Optional[list[str]] = None
    main_image: Optional[str] = None
    specifications: Optional[dict[str, str]] = None
    features: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    brand: Optional[str] = None
    warranty: Optional[str] = None


# ============================================================================
# ACCOUNT SCHEMAS
# ============================================================================


class AccountDraft(StoreSchema):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, repr=False)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[Address] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, v: str) -> str:
        if len(v.encode("utf-8")) > 72:
            raise ValueError("must be at most 72 bytes")
        return v


class AccountPatch(StoreSchema):
    """Profile fields an update may touch. Credentials have their own path."""

    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[Address] = None


class AdminAccountPatch(AccountPatch):
    """Profile fields plus the ones only an admin may change."""

    role: Optional[AccountRole] = None
    is_active: Optional[bool] = None


# ============================================================================
# CART SCHEMAS
# ============================================================================


class SnapshotHint(StoreSchema):
    """Product data the caller already has; missing pieces are looked up."""

    name: Optional[str] = None
    price: Optional[Money] = Field(None, ge=0)
    image: Optional[str] = None
    currency: Optional[Currency] = None

    def is_complete(self) -> bool:
        return self.name is not None and self.price is not None


class CartView(StoreSchema):
    entries: list[CartEntry]
    total: Money
    count: int


class GuestCartEntry(StoreSchema):
    product_id: str
    quantity: int = 1
    product_data: Optional[SnapshotHint] = None


class GuestCart(StoreSchema):
    """
    Cart accumulated client-side before login.

    ``cart_id`` identifies one guest cart and should change whenever the client
    discards its guest store. Without it the cart is identified by a digest of
    the guest id and its entries.
    """

    guest_id: str = Field(..., min_length=1)
    cart_id: Optional[str] = Field(default=None, min_length=1)
    entries: list[GuestCartEntry] = Field(default_factory=list)

    @property
    def merge_token(self) -> str:
        if self.cart_id:
            return f"{self.guest_id}:{self.cart_id}"
        contents = sorted((e.product_id, e.quantity) for e in self.entries)
        digest = hashlib.sha256(
            json.dumps([self.guest_id, contents]).encode("utf-8")
        ).hexdigest()[:16]
        return f"{self.guest_id}:{digest}"


class MergeFailure(StoreSchema):
    product_id: str
    error: str
    message: str


class MergeReport(StoreSchema):
    merged: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failures: list[MergeFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemRequest(StoreSchema):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CheckoutDraft(StoreSchema):
    """Everything an order needs except its items (checkout from the cart)."""

    customer_info: CustomerInfo
    shipping_address: OrderAddress
    billing_address: Optional[OrderAddress] = None
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=1000)
    tax: Money = Field(ZERO, ge=0)
    shipping: Money = Field(ZERO, ge=0)
    discount: Money = Field(ZERO, ge=0)

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalise_payment_method(cls, v: Any) -> Any:
        # "cod" is the short form older clients send
        if isinstance(v, str) and v.strip().lower() == "cod":
            return PaymentMethod.CASH_ON_DELIVERY
        return v


class OrderDraft(CheckoutDraft):
    items: list[OrderItemRequest] = Field(..., min_length=1)


class OrderFilter(StoreSchema):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    user_id: Optional[str] = None  # honoured for admins only
