from decimal import Decimal

import pytest
from sqlalchemy import func, select

from pos_core.core.errors import BadRequest, Forbidden, NotFound
from pos_core.models import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    Payment,
    RestaurantTable,
    TableStatus,
)
from tests.conftest import ADMIN, CASHIER, SERVER, fetch


async def _order_of_45(session_maker, ledger, seed, table_id=None):
    """Open an order with three burgers (45.00)."""
    async with session_maker() as session:
        order = await ledger.create_order(session, SERVER, table_id=table_id)
        change = await ledger.add_item(session, order.id, SERVER, seed.burger, 3)
    assert change.order.total_amount == Decimal("45.00")
    return order


async def _pay(session_maker, settlement, order_id, method_id, amount, tip="0", actor=CASHIER):
    async with session_maker() as session:
        return await settlement.process_payment(
            session, order_id, actor, method_id, amount, tip_amount=tip
        )


async def _payment_count(session_maker, order_id):
    async with session_maker() as session:
        return (await session.execute(
            select(func.count(Payment.id)).where(Payment.order_id == order_id)
        )).scalar()


@pytest.mark.anyio
async def test_exact_payment_with_tip(session_maker, ledger, settlement, seed, audit_sink):
    order = await _order_of_45(session_maker, ledger, seed, table_id=seed.table)

    result = await _pay(session_maker, settlement, order.id, seed.cash, "50.00", tip="5.00")

    assert result.change == Decimal("0.00")
    assert result.payment.amount_due == Decimal("45.00")
    assert result.payment.amount_paid == Decimal("50.00")
    assert result.payment.tip_amount == Decimal("5.00")
    assert result.payment.cashier_id == CASHIER.id
    assert result.payment.payment_number.startswith("PAY-")
    assert result.order.status == OrderStatus.PAID
    assert result.order.closed_at is not None

    table = await fetch(session_maker, RestaurantTable, seed.table)
    assert table.status == TableStatus.AVAILABLE
    assert table.current_order_id is None
    assert table.locked_by_user_id is None
    assert table.locked_at is None

    async with session_maker() as session:
        items = (await session.execute(
            select(OrderItem).where(OrderItem.order_id == order.id)
        )).scalars().all()
    assert all(i.status == OrderItemStatus.SERVED and i.served_at is not None for i in items)
    assert audit_sink.actions()[-1] == "PAYMENT_PROCESSED"


@pytest.mark.anyio
async def test_insufficient_payment_changes_nothing(session_maker, ledger, settlement, seed):
    order = await _order_of_45(session_maker, ledger, seed, table_id=seed.table)

    with pytest.raises(BadRequest) as exc:
        await _pay(session_maker, settlement, order.id, seed.cash, "49.99", tip="5.00")
    assert "Required: 50.00" in exc.value.message

    stored = await fetch(session_maker, Order, order.id)
    assert stored.status == OrderStatus.OPEN
    assert await _payment_count(session_maker, order.id) == 0
    table = await fetch(session_maker, RestaurantTable, seed.table)
    assert table.current_order_id == order.id


@pytest.mark.anyio
async def test_overpayment_returns_change(session_maker, ledger, settlement, seed):
    order = await _order_of_45(session_maker, ledger, seed)

    result = await _pay(session_maker, settlement, order.id, seed.cash, "60", tip="5")

    assert result.change == Decimal("10.00")
    assert result.payment.change_amount == Decimal("10.00")
    assert result.to_dict()["change"] == "10.00"


@pytest.mark.anyio
async def test_order_is_paid_only_once(session_maker, ledger, settlement, seed):
    order = await _order_of_45(session_maker, ledger, seed)
    await _pay(session_maker, settlement, order.id, seed.cash, "45.00")

    with pytest.raises(BadRequest) as exc:
        await _pay(session_maker, settlement, order.id, seed.cash, "45.00")
    assert exc.value.message == "Order is already paid"
    assert await _payment_count(session_maker, order.id) == 1


@pytest.mark.anyio
async def test_takeaway_settlement_touches_no_table(session_maker, ledger, settlement, seed):
    order = await _order_of_45(session_maker, ledger, seed)
    result = await _pay(session_maker, settlement, order.id, seed.cash, "45.00")

    assert result.order.table_id is None
    for table_id in (seed.table, seed.table2, seed.table3):
        table = await fetch(session_maker, RestaurantTable, table_id)
        assert table.status == TableStatus.AVAILABLE


@pytest.mark.anyio
async def test_payment_rejections(session_maker, ledger, settlement, seed):
    order = await _order_of_45(session_maker, ledger, seed)

    with pytest.raises(Forbidden):
        await _pay(session_maker, settlement, order.id, seed.cash, "45.00", actor=SERVER)
    with pytest.raises(NotFound):
        await _pay(session_maker, settlement, 999, seed.cash, "45.00")
    with pytest.raises(BadRequest):
        await _pay(session_maker, settlement, order.id, seed.voucher, "45.00")
    with pytest.raises(BadRequest):
        await _pay(session_maker, settlement, order.id, 999, "45.00")
    with pytest.raises(BadRequest):
        await _pay(session_maker, settlement, order.id, seed.cash, "-45.00")
    for amount, tip in (("1e30", "0"), ("10000000000.00", "0"), ("45.00", "1e30")):
        with pytest.raises(BadRequest) as exc:
            await _pay(session_maker, settlement, order.id, seed.cash, amount, tip=tip)
        assert "exceeds maximum amount" in exc.value.message
    assert await _payment_count(session_maker, order.id) == 0

    async with session_maker() as session:
        await ledger.cancel_order(session, order.id, ADMIN)
    with pytest.raises(BadRequest) as exc:
        await _pay(session_maker, settlement, order.id, seed.cash, "45.00")
    assert exc.value.message == "Cannot pay for a cancelled/void order"


@pytest.mark.anyio
async def test_empty_order_can_be_settled_for_zero(session_maker, ledger, settlement, seed):
    async with session_maker() as session:
        order = await ledger.create_order(session, SERVER)
    result = await _pay(session_maker, settlement, order.id, seed.cash, "0")
    assert result.payment.amount_due == Decimal("0.00")
    assert result.change == Decimal("0.00")
