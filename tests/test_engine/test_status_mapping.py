"""Tests for order/delivery status translation."""

import pytest

from delivery_dispatch.engine.status_mapping import (
    effective_delivery_status,
    to_delivery_status,
    to_order_status,
)
from delivery_dispatch.models.delivery import DeliveryStatus
from delivery_dispatch.models.order import OrderStatus


@pytest.mark.parametrize(
    "order_status",
    [OrderStatus.READY, OrderStatus.PREPARING, OrderStatus.CONFIRMED, OrderStatus.DELIVERED],
)
def test_round_trip_for_paired_statuses(order_status: OrderStatus) -> None:
    """Mapping to delivery status and back returns the original status."""
    assert to_order_status(to_delivery_status(order_status)) == order_status


def test_cancelled_collapses_to_delayed() -> None:
    assert to_delivery_status(OrderStatus.CANCELLED) == DeliveryStatus.DELAYED
    assert to_order_status(DeliveryStatus.DELAYED) == OrderStatus.CANCELLED


def test_forward_table() -> None:
    assert to_delivery_status("ready") == DeliveryStatus.ASSIGNED
    assert to_delivery_status("preparing") == DeliveryStatus.PICKED_UP
    assert to_delivery_status("confirmed") == DeliveryStatus.IN_TRANSIT
    assert to_delivery_status("delivered") == DeliveryStatus.DELIVERED


def test_unknown_and_pending_default_to_assigned() -> None:
    """Statuses outside the table fall back to assigned."""
    assert to_delivery_status(OrderStatus.PENDING) == DeliveryStatus.ASSIGNED
    assert to_delivery_status("refunded") == DeliveryStatus.ASSIGNED


def test_effective_status_prefers_assignment(make_order, make_assignment) -> None:
    order = make_order("1", status=OrderStatus.READY)
    assignment = make_assignment("1", status=DeliveryStatus.IN_TRANSIT)

    assert effective_delivery_status(order, None) == DeliveryStatus.ASSIGNED
    assert effective_delivery_status(order, assignment) == DeliveryStatus.IN_TRANSIT
