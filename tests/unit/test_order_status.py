"""Unit tests for the order status transition table."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from services.store_service.errors import InvalidTransition
from services.store_service.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
)
from services.store_service.services.order_status import (
    allowed_transitions,
    can_transition,
    plan_transition,
)

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def _order(status=OrderStatus.PENDING, **overrides):
    data = {
        "order_number": "HOT-12345678-ABCDE",
        "customer_info": {"first_name": "Test", "email": "c@test.com"},
        "items": [
            {
                "product_id": "p1",
                "product_name": "P1",
                "price": 10,
                "quantity": 2,
                "line_total": 20,
            }
        ],
        "total_amount": 20,
        "pricing": {"subtotal": 20, "total": 20},
        "status": status,
        "payment_method": "cash_on_delivery",
        "shipping_address": {"street": "s", "city": "c", "country": "EG"},
        "status_history": [{"status": "pending", "timestamp": NOW}],
    }
    data.update(overrides)
    return Order.model_validate(data)


@pytest.mark.unit
def test_forward_moves_may_skip_steps():
    assert allowed_transitions(OrderStatus.PENDING) == {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }
    assert can_transition(OrderStatus.CONFIRMED, OrderStatus.SHIPPED)
    assert not can_transition(OrderStatus.SHIPPED, OrderStatus.PROCESSING)


@pytest.mark.unit
@pytest.mark.parametrize(
    "status",
    [
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ],
)
def test_cancel_not_reachable_after_shipping(status):
    assert OrderStatus.CANCELLED not in allowed_transitions(status)


@pytest.mark.unit
def test_refund_only_from_delivered():
    assert allowed_transitions(OrderStatus.DELIVERED) == {OrderStatus.REFUNDED}
    assert allowed_transitions(OrderStatus.CANCELLED) == frozenset()
    assert allowed_transitions(OrderStatus.REFUNDED) == frozenset()
    assert not can_transition(OrderStatus.SHIPPED, OrderStatus.REFUNDED)


@pytest.mark.unit
def test_plan_appends_history_without_touching_old_entries():
    order = _order()

    changes = plan_transition(
        order, OrderStatus.CONFIRMED, actor_id="admin-1", note="Paid", now=NOW
    )

    assert changes["status"] == "confirmed"
    assert len(changes["statusHistory"]) == 2
    assert changes["statusHistory"][0] == order.status_history[0].to_record()
    assert changes["statusHistory"][1] == {
        "status": "confirmed",
        "timestamp": "2024-03-01T09:30:00.000000+00:00",
        "note": "Paid",
        "actor": "admin-1",
    }
    # The order model itself is not modified
    assert order.status == OrderStatus.PENDING
    assert len(order.status_history) == 1


@pytest.mark.unit
def test_delivered_stamps_completion_once():
    order = _order(OrderStatus.SHIPPED)
    changes = plan_transition(order, OrderStatus.DELIVERED, now=NOW)
    assert changes["completedAt"] == "2024-03-01T09:30:00.000000+00:00"

    delivered = _order(OrderStatus.DELIVERED, completed_at=NOW)
    again = plan_transition(delivered, OrderStatus.DELIVERED)
    assert "completedAt" not in again
    assert len(again["statusHistory"]) == 2


@pytest.mark.unit
def test_cancel_stamps_cancelled_at():
    order = _order(OrderStatus.PROCESSING)
    changes = plan_transition(order, OrderStatus.CANCELLED, now=NOW)
    assert changes["cancelledAt"] == "2024-03-01T09:30:00.000000+00:00"


@pytest.mark.unit
def test_refund_marks_paid_order_refunded():
    order = _order(OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID)
    changes = plan_transition(order, OrderStatus.REFUNDED, now=NOW)
    assert changes["paymentStatus"] == "refunded"


@pytest.mark.unit
def test_illegal_move_raises_invalid_transition():
    with pytest.raises(InvalidTransition) as exc_info:
        plan_transition(_order(OrderStatus.CANCELLED), OrderStatus.PENDING)

    assert exc_info.value.current == "cancelled"
    assert exc_info.value.requested == "pending"
    assert exc_info.value.to_dict()["currentStatus"] == "cancelled"


@pytest.mark.unit
def test_history_entries_are_immutable():
    entry = StatusHistoryEntry(status=OrderStatus.PENDING, timestamp=NOW)
    with pytest.raises(ValidationError):
        entry.note = "rewritten"
    assert _order().total_amount == Decimal("20.00")
