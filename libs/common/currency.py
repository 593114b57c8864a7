"""Money helpers for the storefront.

Internal unit: ``Decimal`` quantised to two places (piastres/cents).
Storage / wire unit: JSON number, e.g. ``1500.0``.

Arithmetic on prices and totals is always done on ``Decimal`` values; the
float rendering only exists at the persistence boundary.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Iterable, Union

from pydantic import AfterValidator, PlainSerializer

# ─── constants ───────────────────────────────────────────────────────────────

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
SUPPORTED_CURRENCIES = ("EGP", "USD", "EUR")


# ─── conversion helpers ───────────────────────────────────────────────────────


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Quantise a value to two decimal places (round half-up).

    Floats go through ``str`` so that ``10.1`` becomes ``Decimal("10.10")``
    rather than its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_to_float(value: Decimal) -> float:
    """Render a money value for storage."""
    return float(to_money(value))


def line_total(price: Decimal, quantity: int) -> Decimal:
    """price × quantity, quantised."""
    return to_money(to_money(price) * quantity)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    """Sum of money values, quantised. Empty input gives ``0.00``."""
    return to_money(sum(values, ZERO))


Money = Annotated[
    Decimal,
    AfterValidator(to_money),
    PlainSerializer(money_to_float, return_type=float, when_used="json"),
]
