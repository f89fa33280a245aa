import itertools
import os
from decimal import Decimal
from types import SimpleNamespace

import pytest

os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./pos_test.db")

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from pos_core.core.actors import Actor, Role, RolePolicy  # noqa: E402
from pos_core.core.config import get_settings  # noqa: E402
from pos_core.database import init_db, make_session_maker  # noqa: E402
from pos_core.models import PaymentMethod, Product, RestaurantTable  # noqa: E402
from pos_core.services import totals  # noqa: E402
from pos_core.services.audit import MemoryAuditSink  # noqa: E402
from pos_core.services.catalog import CatalogGate  # noqa: E402
from pos_core.services.ledger import OrderLedger  # noqa: E402
from pos_core.services.settlement import SettlementEngine  # noqa: E402
from pos_core.services.tables import TableAdmin, TableLockManager  # noqa: E402

get_settings.cache_clear()

SERVER = Actor(id=1, role=Role.SERVER)
OTHER_SERVER = Actor(id=2, role=Role.SERVER)
CASHIER = Actor(id=5, role=Role.CASHIER)
MODERATOR = Actor(id=8, role=Role.MODERATOR)
ADMIN = Actor(id=9, role=Role.ADMIN)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def unique_ticket_numbers(monkeypatch):
    """Ticket suffixes are random in production; make them distinct per test."""
    counter = itertools.count(1)
    monkeypatch.setattr(totals.random, "randint", lambda a, b: next(counter) % (b + 1))


@pytest.fixture
async def engine(tmp_path, anyio_backend):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def locks(audit_sink) -> TableLockManager:
    return TableLockManager(audit_sink=audit_sink, policy=RolePolicy())


@pytest.fixture
def table_admin(locks, audit_sink) -> TableAdmin:
    return TableAdmin(locks=locks, audit_sink=audit_sink, policy=RolePolicy())


@pytest.fixture
def ledger(locks, audit_sink) -> OrderLedger:
    return OrderLedger(
        catalog=CatalogGate(),
        locks=locks,
        audit_sink=audit_sink,
        policy=RolePolicy(),
        tax_rate=Decimal("0"),
    )


@pytest.fixture
def settlement(ledger, audit_sink) -> SettlementEngine:
    return SettlementEngine(ledger=ledger, audit_sink=audit_sink, policy=RolePolicy())


@pytest.fixture
async def seed(session_maker):
    """Reference data: three tables, a small menu and two payment methods."""
    tables = [RestaurantTable(table_number=n, capacity=4) for n in (1, 2, 3)]
    burger = Product(name="Burger", price=Decimal("15.00"))
    cake = Product(name="Cheesecake", price=Decimal("5.00"), track_stock=True, stock_quantity=10)
    fish = Product(name="Market fish", price=Decimal("20.00"), variable_price=True)
    sold_out = Product(name="Soup of the day", price=Decimal("6.50"), is_available=False)
    retired = Product(name="Old special", price=Decimal("9.00"), is_active=False)
    cash = PaymentMethod(name="cash")
    voucher = PaymentMethod(name="voucher", is_active=False)

    async with session_maker() as session:
        async with session.begin():
            session.add_all([*tables, burger, cake, fish, sold_out, retired, cash, voucher])

    return SimpleNamespace(
        table=tables[0].id,
        table2=tables[1].id,
        table3=tables[2].id,
        burger=burger.id,
        cake=cake.id,
        fish=fish.id,
        sold_out=sold_out.id,
        retired=retired.id,
        cash=cash.id,
        voucher=voucher.id,
    )


async def fetch(session_maker, model, pk):
    """Read a row back through a fresh session."""
    async with session_maker() as session:
        return await session.get(model, pk)
