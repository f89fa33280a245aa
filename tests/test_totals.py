import re
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from pos_core.core.errors import BadRequest
from pos_core.models import Order, OrderItemStatus, Payment
from pos_core.services.totals import (
    calculate_totals,
    MAX_AMOUNT,
    generate_ticket_number,
    parse_amount,
    to_money,
)


def _item(subtotal, status=OrderItemStatus.PENDING, discount="0"):
    return SimpleNamespace(
        subtotal=Decimal(subtotal),
        discount_amount=Decimal(discount),
        status=status,
    )


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(Decimal("2.344")) == Decimal("2.34")
    assert to_money(None) == Decimal("0.00")
    assert to_money(3) == Decimal("3.00")


def test_parse_amount_rejects_negative_and_garbage():
    assert parse_amount("49.99", "amount paid") == Decimal("49.99")
    with pytest.raises(BadRequest):
        parse_amount("-1", "amount paid")
    with pytest.raises(BadRequest):
        parse_amount("abc", "amount paid")
    with pytest.raises(BadRequest):
        parse_amount(None, "tip amount")


def test_parse_amount_rejects_values_too_large_for_money_columns():
    assert parse_amount("9999999999.99", "amount paid") == MAX_AMOUNT
    for value in ("1e30", "10000000000.00", "9999999999.996"):
        with pytest.raises(BadRequest) as exc:
            parse_amount(value, "amount paid")
        assert "exceeds maximum amount" in exc.value.message


def test_totals_skip_cancelled_items():
    items = [
        _item("30.00"),
        _item("15.00"),
        _item("99.00", status=OrderItemStatus.CANCELLED),
    ]
    totals = calculate_totals(items)
    assert totals.subtotal == Decimal("45.00")
    assert totals.tax_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("45.00")


def test_totals_apply_tax_line_and_order_discount():
    items = [_item("20.00", discount="2.00"), _item("10.00")]
    totals = calculate_totals(items, order_discount=Decimal("3.00"), tax_rate=Decimal("0.10"))
    assert totals.subtotal == Decimal("28.00")
    assert totals.tax_amount == Decimal("2.80")
    assert totals.total_amount == Decimal("27.80")


def test_totals_of_empty_order_are_zero():
    totals = calculate_totals([])
    assert totals.subtotal == totals.tax_amount == totals.total_amount == Decimal("0.00")


def test_ticket_number_format():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    number = generate_ticket_number("ORD", now)
    assert re.fullmatch(r"ORD-20261019-\d{6}", number)
    assert generate_ticket_number("PAY", now).startswith("PAY-20261019-")

    longest = generate_ticket_number("X" * 10, now)
    assert len(longest) <= Order.__table__.c.order_number.type.length
    assert len(longest) <= Payment.__table__.c.payment_number.type.length
