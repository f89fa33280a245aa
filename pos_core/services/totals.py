"""
Order Totals and Ticket Numbers

Pure helpers shared by the ledger and the settlement engine.

Totals formula (applied after every item mutation):

    subtotal = sum(item.subtotal - item.discount) over non-cancelled items
    tax      = subtotal * tax_rate
    total    = subtotal + tax - order.discount

All amounts are Decimal rounded to cents.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from pos_core.core.clock import utcnow
from pos_core.core.errors import BadRequest
from pos_core.models import OrderItem, OrderItemStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest value a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal("9999999999.99")


def to_money(value: Any) -> Decimal:
    """Quantize a number to cents; ``None`` counts as zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, field: str) -> Decimal:
    """
    Parse a caller-supplied non-negative amount.

    Raises:
        BadRequest: if the value is not numeric, is negative or does not
            fit a money column
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise BadRequest(f"Invalid {field}: must be a number")
    if not amount.is_finite() or amount < 0:
        raise BadRequest(f"Invalid {field}: must be a non-negative number")
    # Bounded before quantizing; cents rounding may still carry past the limit
    ensure_within_limit(amount, field)
    return ensure_within_limit(to_money(amount), field)


def ensure_within_limit(amount: Decimal, field: str) -> Decimal:
    """Reject an amount too large for a money column."""
    if amount > MAX_AMOUNT:
        raise BadRequest(
            f"Invalid {field}: exceeds maximum amount",
            details={"maximum": str(MAX_AMOUNT)},
        )
    return amount


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def calculate_totals(
    items: Iterable[OrderItem],
    order_discount: Any = ZERO,
    tax_rate: Any = ZERO,
) -> OrderTotals:
    """Compute order totals from its current item set."""
    subtotal = sum(
        (
            to_money(item.subtotal) - to_money(item.discount_amount)
            for item in items
            if item.status != OrderItemStatus.CANCELLED
        ),
        ZERO,
    )
    subtotal = to_money(subtotal)
    tax = to_money(subtotal * Decimal(str(tax_rate)))
    total = to_money(subtotal + tax - to_money(order_discount))
    return OrderTotals(subtotal=subtotal, tax_amount=tax, total_amount=total)


def generate_ticket_number(prefix: str, now: Optional[datetime] = None) -> str:
    """
    Generate a human-readable ticket code like ``ORD-20261019-004217``.

    Independent of any row id. Collisions are possible but rare and surface
    as a uniqueness failure the caller retries.
    """
    now = now or utcnow()
    return f"{prefix}-{now:%Y%m%d}-{random.randint(0, 999999):06d}"
