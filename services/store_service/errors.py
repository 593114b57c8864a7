"""Domain errors raised by the store core.

Every error carries a human-readable ``message`` and an HTTP-ish
``status_code`` for whatever transport sits in front of the core.
Storage-level failures (``libs.db.errors``) are not wrapped here.
"""

import math
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel


class StoreError(Exception):
    """Base exception for expected, caller-facing store failures."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "statusCode": self.status_code,
        }


class NotFound(StoreError):
    status_code = 404


class ProductNotFound(NotFound):
    """An order or cart referenced a product that no longer exists."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "productId": self.product_id}


class ValidationError(StoreError):
    """Malformed input. ``errors`` holds one message per offending field."""

    status_code = 400

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        """Flatten pydantic errors into camelCase ``"field.path: message"`` strings."""
        errors = []
        for err in exc.errors():
            location = ".".join(_field_name(part) for part in err["loc"])
            errors.append(f"{location}: {err['msg']}" if location else err["msg"])
        return cls(errors)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


def _field_name(part) -> str:
    """Input keys may arrive in either spelling; messages always use camelCase."""
    if isinstance(part, str) and part.isidentifier() and "_" in part.strip("_"):
        return to_camel(part)
    return str(part)


class OutOfStock(StoreError):
    def __init__(self, product_id: str, product_name: str):
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"Product {product_name} is out of stock")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "productId": self.product_id}


class InvalidTransition(StoreError):
    """Illegal order status change."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change order status from '{current}' to '{requested}'"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "currentStatus": self.current,
            "requestedStatus": self.requested,
        }


class AccountLocked(StoreError):
    status_code = 423

    def __init__(self, locked_until: datetime, now: datetime):
        self.locked_until = locked_until
        self.retry_after_seconds = max(
            0, math.ceil((locked_until - now).total_seconds())
        )
        minutes = max(1, math.ceil(self.retry_after_seconds / 60))
        super().__init__(
            f"Account is temporarily locked due to too many failed login attempts. "
            f"Try again in {minutes} minute(s)."
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "lockedUntil": self.locked_until.isoformat(),
            "retryAfterSeconds": self.retry_after_seconds,
        }


class InvalidCredentials(StoreError):
    status_code = 401

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class Forbidden(StoreError):
    status_code = 403

    def __init__(self, message: str = "Not allowed"):
        super().__init__(message)
