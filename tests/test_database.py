import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite

from pos_core.database import lock_statement
from pos_core.models import Order, Product, RestaurantTable
from tests.conftest import CASHIER, SERVER


def _pg_sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def test_lock_statement_requests_row_lock_on_postgresql():
    for model in (RestaurantTable, Order, Product):
        sql = _pg_sql(lock_statement(model, 1))
        assert sql.rstrip().endswith("FOR UPDATE")
        assert f"WHERE {model.__tablename__}.id = " in sql


def test_lock_statement_degrades_on_sqlite():
    sql = str(lock_statement(Order, 1).compile(dialect=sqlite.dialect()))
    assert "FOR UPDATE" not in sql
    assert lock_statement(Order, 1).get_execution_options()["populate_existing"] is True


@pytest.mark.anyio
async def test_operations_lock_the_rows_they_mutate(session_maker, ledger, settlement, seed):
    locked = []

    def record(state):
        if state.is_select and "FOR UPDATE" in _pg_sql(state.statement):
            locked.append(state.statement.column_descriptions[0]["entity"])

    async with session_maker() as session:
        event.listen(session.sync_session, "do_orm_execute", record)
        order = await ledger.create_order(session, SERVER, table_id=seed.table)
        assert locked == [RestaurantTable]

        locked.clear()
        await ledger.add_item(session, order.id, SERVER, seed.burger, 2)
        assert locked == [Order, Product]

        locked.clear()
        await settlement.process_payment(session, order.id, CASHIER, seed.cash, "30.00")
        assert locked == [Order, RestaurantTable]
