"""Catalog reads (filtering, paging, search) plus thin admin CRUD."""

from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from libs.common.config import Settings
from libs.common.datetime_utils import to_iso, utc_now
from libs.common.logging import get_logger
from libs.db.base import ASCENDING, DESCENDING, Collection, Query, RangeFilter
from libs.db.errors import ConstraintViolation, RecordNotFound
from services.store_service.errors import ProductNotFound, ValidationError
from services.store_service.models import SEARCH_FIELDS, Product, slugify
from services.store_service.schemas import (
    Page,
    Pagination,
    ProductCreate,
    ProductFilter,
    ProductSort,
    ProductUpdate,
)

logger = get_logger(__name__)


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def build_product_query(product_filter: ProductFilter) -> Query:
    """Translate a catalog filter into a backend-neutral query (unpaged, unsorted)."""
    query = Query()
    if product_filter.category:
        query.equals["categorySlug"] = product_filter.category
    if product_filter.in_stock is not None:
        query.equals["inStock"] = product_filter.in_stock
    if product_filter.featured is not None:
        query.equals["featured"] = product_filter.featured
    if product_filter.best_seller is not None:
        query.equals["bestSeller"] = product_filter.best_seller

    price_range = RangeFilter(
        gte=_as_float(product_filter.min_price),
        lte=_as_float(product_filter.max_price),
    )
    if not price_range.is_open():
        query.ranges["price"] = price_range

    if product_filter.search and product_filter.search.strip():
        query.search = product_filter.search.strip()
        query.search_fields = SEARCH_FIELDS
    return query


class CatalogRepository:
    """Read-mostly access to products, through the persistence gateway."""

    def __init__(self, gateway, settings: Settings):
        self._gateway = gateway
        self._settings = settings

    def _pagination(self, pagination: Optional[Pagination]) -> Pagination:
        if pagination is None:
            return Pagination(page=1, limit=self._settings.DEFAULT_PAGE_SIZE)
        if pagination.limit > self._settings.MAX_PAGE_SIZE:
            return Pagination(page=pagination.page, limit=self._settings.MAX_PAGE_SIZE)
        return pagination

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(
        self,
        product_filter: Optional[ProductFilter] = None,
        pagination: Optional[Pagination] = None,
        sort: Optional[ProductSort] = None,
    ) -> Page[Product]:
        product_filter = product_filter or ProductFilter()
        pagination = self._pagination(pagination)
        sort = sort or ProductSort()

        query = build_product_query(product_filter)
        query.sort = [(sort.sort_by, DESCENDING if sort.descending else ASCENDING)]
        query.skip = pagination.skip
        query.limit = pagination.limit

        result = await self._gateway.find(Collection.PRODUCTS, query)
        products = [Product.from_record(r) for r in result.records]
        return Page[Product].build(products, result.total, pagination)

    async def find_by_id(self, product_id: str) -> Product:
        record = await self._gateway.get(Collection.PRODUCTS, product_id)
        if record is None:
            raise ProductNotFound(product_id)
        return Product.from_record(record)

    async def find_by_category(self, category_slug: str) -> list[Product]:
        query = Query(equals={"categorySlug": category_slug})
        result = await self._gateway.find(Collection.PRODUCTS, query)
        return [Product.from_record(r) for r in result.records]

    async def search(self, text: str) -> list[Product]:
        if not text or not text.strip():
            return []
        query = build_product_query(ProductFilter(search=text))
        result = await self._gateway.find(Collection.PRODUCTS, query)
        return [Product.from_record(r) for r in result.records]

    async def list_categories(self) -> list[str]:
        categories = await self._gateway.distinct(Collection.PRODUCTS, "category")
        return sorted(categories)

    # ------------------------------------------------------------------
    # Admin CRUD
    # ------------------------------------------------------------------

    async def create_product(self, data: Union[ProductCreate, dict]) -> Product:
        if not isinstance(data, ProductCreate):
            try:
                data = ProductCreate.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        product_id = data.id or slugify(data.name)
        if not product_id:
            raise ValidationError(["id: cannot be derived from the product name"])

        fields = data.model_dump(exclude={"id", "category_slug", "currency"})
        product = Product(
            id=product_id,
            category_slug=data.category_slug or slugify(data.category),
            currency=data.currency or self._settings.DEFAULT_CURRENCY,
            **fields,
        )
        try:
            record = await self._gateway.insert(Collection.PRODUCTS, product.to_record())
        except ConstraintViolation as exc:
            raise ValidationError([f"id: product {product_id} already exists"]) from exc

        logger.info("Created product %s", product_id)
        return Product.from_record(record)

    async def update_product(
        self, product_id: str, patch: Union[ProductUpdate, dict]
    ) -> Product:
        if not isinstance(patch, ProductUpdate):
            try:
                patch = ProductUpdate.model_validate(patch)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        changes = patch.model_dump(
            mode="json", by_alias=True, exclude_unset=True, exclude_none=True
        )
        if "category" in changes:
            changes["categorySlug"] = slugify(changes["category"])
        changes["updatedAt"] = to_iso(utc_now())

        try:
            record = await self._gateway.update(
                Collection.PRODUCTS, product_id, changes
            )
        except RecordNotFound as exc:
            raise ProductNotFound(product_id) from exc

        logger.info("Updated product %s: %s", product_id, sorted(changes))
        return Product.from_record(record)

    async def delete_product(self, product_id: str) -> Product:
        try:
            record = await self._gateway.delete(Collection.PRODUCTS, product_id)
        except RecordNotFound as exc:
            raise ProductNotFound(product_id) from exc
        logger.info("Deleted product %s", product_id)
        return Product.from_record(record)
