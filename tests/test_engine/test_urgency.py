"""Tests for urgency classification and priority scoring."""

from datetime import date, timedelta, timezone

import pytest

from delivery_dispatch.engine.urgency import (
    Urgency,
    classify_urgency,
    delivery_deadline,
    parse_slot_start,
    priority_score,
    score_order,
)
from delivery_dispatch.models.delivery import DeliveryStatus
from delivery_dispatch.models.order import OrderStatus, Priority


def test_score_bounds() -> None:
    """critical/high is the maximum; normal/low the minimum of the normal tier."""
    scores = [priority_score(u, p) for u in Urgency for p in Priority]
    assert priority_score(Urgency.CRITICAL, Priority.HIGH) == 33
    assert max(scores) == 33
    assert priority_score(Urgency.NORMAL, Priority.LOW) == 1
    assert min(priority_score(Urgency.NORMAL, p) for p in Priority) == 1


def test_missing_priority_scores_as_medium() -> None:
    assert priority_score(Urgency.URGENT, None) == 22


def test_unassigned_order_older_than_an_hour_is_critical(make_order, now) -> None:
    order = make_order(status=OrderStatus.READY, minutes_ago=61)
    assert classify_urgency(order, None, now) == Urgency.CRITICAL


def test_unassigned_order_older_than_half_an_hour_is_urgent(make_order, now) -> None:
    order = make_order(status=OrderStatus.READY, minutes_ago=31)
    assert classify_urgency(order, None, now) == Urgency.URGENT


def test_fresh_unassigned_order_is_normal(make_order, now) -> None:
    order = make_order(status=OrderStatus.READY, minutes_ago=10)
    assert classify_urgency(order, None, now) == Urgency.NORMAL


def test_assignment_not_picked_up_after_thirty_minutes_is_urgent(
    make_order, make_assignment, now
) -> None:
    order = make_order(status=OrderStatus.READY, minutes_ago=90)
    assignment = make_assignment(order.id, status=DeliveryStatus.ASSIGNED, minutes_ago=31)
    assert classify_urgency(order, assignment, now) == Urgency.URGENT


def test_picked_up_assignment_is_not_flagged(make_order, make_assignment, now) -> None:
    order = make_order(status=OrderStatus.PREPARING, minutes_ago=90)
    assignment = make_assignment(order.id, status=DeliveryStatus.PICKED_UP, minutes_ago=45)
    assert classify_urgency(order, assignment, now) == Urgency.NORMAL


def test_passed_deadline_is_critical(make_order, make_assignment, now) -> None:
    order = make_order(
        status=OrderStatus.CONFIRMED,
        delivery_date=now.date(),
        delivery_time="09:00 - 11:00",
    )
    assignment = make_assignment(order.id, status=DeliveryStatus.IN_TRANSIT)
    assert classify_urgency(order, assignment, now) == Urgency.CRITICAL


def test_deadline_within_two_hours_is_urgent(make_order, make_assignment, now) -> None:
    order = make_order(
        status=OrderStatus.CONFIRMED,
        delivery_date=now.date(),
        delivery_time="13:30 - 15:00",
    )
    assignment = make_assignment(order.id, status=DeliveryStatus.IN_TRANSIT)
    assert classify_urgency(order, assignment, now) == Urgency.URGENT


def test_first_matching_rule_wins(make_order, now) -> None:
    """An urgent unassigned-age match returns before a passed deadline is considered."""
    order = make_order(
        status=OrderStatus.READY,
        minutes_ago=45,
        delivery_date=now.date() - timedelta(days=1),
        delivery_time="10:00 - 12:00",
    )
    assert classify_urgency(order, None, now) == Urgency.URGENT


def test_deadline_uses_configured_timezone(make_order, make_assignment, now) -> None:
    """A 13:00 slot in UTC+2 opened at 11:00 UTC, so it has already passed."""
    tz = timezone(timedelta(hours=2))
    order = make_order(
        status=OrderStatus.CONFIRMED,
        delivery_date=now.date(),
        delivery_time="13:00",
    )
    assignment = make_assignment(order.id, status=DeliveryStatus.IN_TRANSIT)
    assert classify_urgency(order, assignment, now, tz) == Urgency.CRITICAL
    assert classify_urgency(order, assignment, now) == Urgency.URGENT


@pytest.mark.parametrize(
    "time_range,expected",
    [
        ("14:00 - 16:00", (14, 0)),
        ("Morning 9:30-11:00", (9, 30)),
        ("anytime", None),
        ("", None),
        (None, None),
        ("25:00", None),
    ],
)
def test_parse_slot_start(time_range, expected) -> None:
    parsed = parse_slot_start(time_range)
    if expected is None:
        assert parsed is None
    else:
        assert (parsed.hour, parsed.minute) == expected


def test_deadline_requires_date_and_time() -> None:
    assert delivery_deadline(None, "10:00") is None
    assert delivery_deadline(date(2026, 3, 2), "soon") is None
    assert delivery_deadline(date(2026, 3, 2), "10:00").hour == 10


def test_score_order_uses_priority_tag(make_order, now) -> None:
    order = make_order(status=OrderStatus.READY, minutes_ago=61, priority=Priority.HIGH)
    assert score_order(order, None, now) == (Urgency.CRITICAL, 33)
