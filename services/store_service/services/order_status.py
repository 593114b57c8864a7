"""Order status transitions.

pending -> confirmed -> processing -> shipped -> delivered

Forward moves may skip steps. Cancellation is possible until the order
ships; a delivered order can only be refunded. Re-applying the current
status is allowed and only adds a history entry.
"""

from datetime import datetime
from typing import Any, Optional

from libs.common.datetime_utils import to_iso, utc_now
from services.store_service.errors import InvalidTransition
from services.store_service.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
)

FULFILMENT_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

CANCELLABLE = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)

TERMINAL = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)


def allowed_transitions(current: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses reachable from ``current`` (the current status itself excluded)."""
    allowed: set[OrderStatus] = set()
    if current in FULFILMENT_FLOW:
        position = FULFILMENT_FLOW.index(current)
        allowed.update(FULFILMENT_FLOW[position + 1 :])
    if current in CANCELLABLE:
        allowed.add(OrderStatus.CANCELLED)
    if current == OrderStatus.DELIVERED:
        allowed.add(OrderStatus.REFUNDED)
    return frozenset(allowed)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target == current or target in allowed_transitions(current)


def plan_transition(
    order: Order,
    target: OrderStatus,
    *,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build the field changes that move ``order`` to ``target``.

    The returned dict carries the full new history (old entries untouched,
    one entry appended). Raises InvalidTransition for illegal moves.
    """
    if not can_transition(order.status, target):
        raise InvalidTransition(order.id, order.status.value, target.value)

    now = now or utc_now()
    entry = StatusHistoryEntry(status=target, timestamp=now, note=note, actor=actor_id)
    history = [e.to_record() for e in order.status_history] + [entry.to_record()]

    changes: dict[str, Any] = {
        "status": target.value,
        "statusHistory": history,
        "updatedAt": to_iso(now),
    }
    if target == OrderStatus.DELIVERED and order.completed_at is None:
        changes["completedAt"] = to_iso(now)
    if target == OrderStatus.CANCELLED and order.cancelled_at is None:
        changes["cancelledAt"] = to_iso(now)
    if (
        target == OrderStatus.REFUNDED
        and order.status != OrderStatus.REFUNDED
        and order.payment_status == PaymentStatus.PAID
    ):
        changes["paymentStatus"] = PaymentStatus.REFUNDED.value
    return changes
