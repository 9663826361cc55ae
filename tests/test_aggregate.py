"""Tests for the order state machine."""

import pytest

from storefront import errors
from storefront.aggregate import (
    TERMINAL,
    OrderAggregate,
    OrderLine,
    OrderStatus,
    can_transition,
    ensure_transition,
    parse_status,
)


class TestTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)
        ensure_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (OrderStatus.PROCESSING, OrderStatus.PENDING),
            (OrderStatus.SHIPPED, OrderStatus.PROCESSING),
            (OrderStatus.DELIVERED, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
            (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
            (OrderStatus.CANCELLED, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.PENDING),
        ],
    )
    def test_blocked(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(errors.InvalidTransition):
            ensure_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL:
            assert not any(can_transition(status, target) for target in OrderStatus)

    def test_cancel_messages(self):
        with pytest.raises(errors.InvalidTransition, match="already cancelled"):
            ensure_transition(OrderStatus.CANCELLED, OrderStatus.CANCELLED)
        with pytest.raises(errors.InvalidTransition, match="Cannot cancel shipped order"):
            ensure_transition(OrderStatus.SHIPPED, OrderStatus.CANCELLED)

    def test_process_message(self):
        with pytest.raises(errors.InvalidTransition) as exc_info:
            ensure_transition(OrderStatus.SHIPPED, OrderStatus.PROCESSING)
        assert exc_info.value.current == "shipped"
        assert exc_info.value.target == "processing"
        assert "Cannot process order with status: shipped" in str(exc_info.value)


class TestParseStatus:
    def test_known(self):
        assert parse_status("delivered") is OrderStatus.DELIVERED

    @pytest.mark.parametrize("value", ["confirmed", "PENDING", "", "refunded"])
    def test_unknown_is_validation_error(self, value):
        with pytest.raises(errors.ValidationError):
            parse_status(value)


def test_aggregate_totals_and_serialisation():
    order = OrderAggregate(
        id=1,
        user_id=None,
        customer_name="Guest",
        customer_phone="123",
        shipping_address="Somewhere far away",
        total_amount=2500,
        status=OrderStatus.PENDING,
        payment_method="cod",
        lines=[
            OrderLine(product_id=1, quantity=2, unit_price=1000),
            OrderLine(product_id=2, quantity=1, unit_price=500),
        ],
    )

    assert order.lines_total == order.total_amount
    assert not order.owned_by(None)

    data = order.to_dict()
    assert data["status"] == "pending"
    assert [item["product_id"] for item in data["items"]] == [1, 2]
    assert "lines" not in data
