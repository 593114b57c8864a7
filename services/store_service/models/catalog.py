"""Store catalog models: products and their derived identifiers."""

import re
import unicodedata
from typing import Optional

from pydantic import Field

from libs.common.currency import Money
from libs.common.datetime_utils import Timestamp, utc_now
from services.store_service.models.base import StoreModel
from services.store_service.models.enums import Currency

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """'Arduino Uno R3 (Original)' -> 'arduino-uno-r3-original'."""
    ascii_value = (
        unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    )
    return _NON_SLUG.sub("-", ascii_value.lower()).strip("-")


# Fields matched by free-text search
SEARCH_FIELDS = ("name", "description", "tags")


class Product(StoreModel):
    """Catalog product. Prices and stock are snapshotted into carts and orders."""

    id: str
    name: str
    category: str
    category_slug: str
    description: str = ""
    short_description: Optional[str] = None
    price: Money = Field(..., ge=0)
    currency: Currency = Currency.EGP

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

    version: int = 1
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)

    @property
    def primary_image(self) -> Optional[str]:
        return self.main_image or (self.images[0] if self.images else None)

    def __repr__(self):
        return f"<Product {self.id} price={self.price} {self.currency.value}>"
