"""Store Service models package."""

from services.store_service.models.accounts import (
    Account,
    Address,
    CartEntry,
    ProductSnapshot,
)
from services.store_service.models.base import StoreModel, new_id
from services.store_service.models.catalog import SEARCH_FIELDS, Product, slugify
from services.store_service.models.commerce import (
    CustomerInfo,
    Order,
    OrderAddress,
    OrderItem,
    Pricing,
    StatusHistoryEntry,
)
from services.store_service.models.enums import (
    AccountRole,
    Currency,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "Account",
    "AccountRole",
    "Address",
    "CartEntry",
    "Currency",
    "CustomerInfo",
    "Order",
    "OrderAddress",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Pricing",
    "Product",
    "ProductSnapshot",
    "SEARCH_FIELDS",
    "StatusHistoryEntry",
    "StoreModel",
    "new_id",
    "slugify",
]
