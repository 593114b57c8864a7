"""Order creation, reads and status changes."""

from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from libs.auth.models import Actor
from libs.common.currency import ZERO, line_total, sum_money, to_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.base import Query
from libs.db.concurrency import run_with_retry
from libs.db.errors import StorageError
from services.store_service.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    OutOfStock,
    StoreError,
    ValidationError,
)
from services.store_service.models import (
    Order,
    OrderItem,
    OrderStatus,
    Pricing,
    StatusHistoryEntry,
)
from services.store_service.schemas import (
    CheckoutDraft,
    OrderDraft,
    OrderFilter,
    Page,
    Pagination,
)
from services.store_service.services.cart_service import CartService
from services.store_service.services.order_status import CANCELLABLE, plan_transition

logger = get_logger(__name__)


def _parse(schema, data):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc


class OrderService:
    """Checkout and the order lifecycle. Orders are only written through here."""

    def __init__(self, gateway, cart_service: Optional[CartService] = None):
        self._gateway = gateway
        self._catalog = gateway.catalog
        self._settings = gateway.settings
        self._carts = cart_service or CartService(gateway)

    async def _retry(self, func):
        return await run_with_retry(
            func, attempts=self._settings.CONFLICT_RETRY_ATTEMPTS
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_order(
        self, draft: Union[OrderDraft, dict], actor: Optional[Actor] = None
    ) -> Order:
        """
        Validate a draft against the live catalog and persist it as one order.

        Every item is checked before anything is written: a missing product
        raises ProductNotFound and an unavailable one raises OutOfStock, and
        in both cases no order exists afterwards. Names and prices are copied
        into the order items and never recomputed.
        """
        draft = _parse(OrderDraft, draft)

        items: list[OrderItem] = []
        currencies = set()
        for requested in draft.items:
            product = await self._catalog.find_by_id(requested.product_id)
            if not product.in_stock:
                raise OutOfStock(product.id, product.name)
            currencies.add(product.currency)
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    price=product.price,
                    quantity=requested.quantity,
                    line_total=line_total(product.price, requested.quantity),
                    image=product.primary_image,
                )
            )

        if len(currencies) > 1:
            raise ValidationError(
                [
                    "items: products priced in different currencies cannot share an order "
                    f"({', '.join(sorted(c.value for c in currencies))})"
                ]
            )
        currency = currencies.pop()

        total_amount = sum_money(item.line_total for item in items)
        grand_total = to_money(
            total_amount + draft.tax + draft.shipping - draft.discount
        )
        pricing = Pricing(
            subtotal=total_amount,
            tax=draft.tax,
            shipping=draft.shipping,
            discount=draft.discount,
            total=max(grand_total, ZERO),
        )

        now = utc_now()
        actor_id = actor.user_id if actor else None
        order = Order(
            order_number=Order.generate_order_number(
                self._settings.ORDER_NUMBER_PREFIX
            ),
            user_id=actor_id,
            customer_info=draft.customer_info,
            items=tuple(items),
            total_amount=total_amount,
            pricing=pricing,
            currency=currency,
            payment_method=draft.payment_method,
            shipping_address=draft.shipping_address,
            billing_address=draft.billing_address or draft.shipping_address,
            notes=draft.notes,
            status_history=(
                StatusHistoryEntry(
                    status=OrderStatus.PENDING,
                    timestamp=now,
                    note="Order created",
                    actor=actor_id,
                ),
            ),
            created_at=now,
            updated_at=now,
        )

        order = await self._gateway.insert_order(order)
        logger.info(
            "Created order %s (%d items, total %s %s)",
            order.order_number,
            len(order.items),
            order.pricing.total,
            order.currency.value,
        )
        return order

    async def checkout_cart(
        self, actor: Actor, draft: Union[CheckoutDraft, dict]
    ) -> Order:
        """Create an order from the actor's cart, then empty the cart."""
        draft = _parse(CheckoutDraft, draft)
        cart = await self._carts.get_cart(actor.user_id)
        if not cart.entries:
            raise ValidationError(["items: cart is empty"])

        order_draft = OrderDraft(
            **draft.model_dump(),
            items=[
                {"product_id": entry.product_id, "quantity": entry.quantity}
                for entry in cart.entries
            ],
        )
        order = await self.create_order(order_draft, actor)

        try:
            await self._carts.clear(actor.user_id)
        except (StoreError, StorageError):
            logger.exception(
                "Order %s created but the cart of %s was not cleared",
                order.order_number,
                actor.user_id,
            )
        return order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        order = await self._gateway.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if not actor.is_admin and not actor.owns(order.user_id):
            raise Forbidden("Not allowed to access this order")
        return order

    async def list_orders(
        self,
        actor: Actor,
        order_filter: Optional[OrderFilter] = None,
        pagination: Optional[Pagination] = None,
    ) -> Page[Order]:
        """Newest first. Non-admins only ever see their own orders."""
        order_filter = order_filter or OrderFilter()
        pagination = pagination or Pagination(limit=self._settings.DEFAULT_PAGE_SIZE)

        query = Query(skip=pagination.skip, limit=pagination.limit)
        if actor.is_admin:
            if order_filter.user_id:
                query.equals["userId"] = order_filter.user_id
        else:
            query.equals["userId"] = actor.user_id
        if order_filter.status:
            query.equals["status"] = order_filter.status.value
        if order_filter.payment_status:
            query.equals["paymentStatus"] = order_filter.payment_status.value

        orders, total = await self._gateway.find_orders(query)
        return Page[Order].build(orders, total, pagination)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    async def cancel(
        self, order_id: str, actor: Actor, reason: Optional[str] = None
    ) -> Order:
        async def write() -> Order:
            order = await self.get_order(order_id, actor)
            if order.status not in CANCELLABLE:
                raise InvalidTransition(
                    order.id, order.status.value, OrderStatus.CANCELLED.value
                )
            changes = plan_transition(
                order,
                OrderStatus.CANCELLED,
                actor_id=actor.user_id,
                note=reason or "Cancelled",
            )
            return await self._gateway.update_order(
                order.id, changes, expected_version=order.version
            )

        order = await self._retry(write)
        logger.info("Order %s cancelled by %s", order.order_number, actor.user_id)
        return order

    async def set_status(
        self,
        order_id: str,
        status: Union[OrderStatus, str],
        actor: Actor,
        note: Optional[str] = None,
    ) -> Order:
        """Admin-only status change; every call appends to the status history."""
        if not actor.is_admin:
            raise Forbidden("Only admins can change order status")
        try:
            target = OrderStatus(status)
        except ValueError as exc:
            raise ValidationError([f"status: unknown order status '{status}'"]) from exc

        async def write() -> Order:
            order = await self.get_order(order_id, actor)
            changes = plan_transition(
                order, target, actor_id=actor.user_id, note=note
            )
            return await self._gateway.update_order(
                order.id, changes, expected_version=order.version
            )

        order = await self._retry(write)
        logger.info(
            "Order %s status set to %s by %s",
            order.order_number,
            target.value,
            actor.user_id,
        )
        return order
