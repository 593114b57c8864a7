"""Store service domain services."""

from services.store_service.services.cart_service import CartService
from services.store_service.services.order_service import OrderService

__all__ = ["CartService", "OrderService"]
