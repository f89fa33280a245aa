from datetime import timedelta

import pytest

from pos_core.core.clock import as_utc, utcnow
from pos_core.core.errors import BadRequest, Conflict, Forbidden, NotFound
from pos_core.models import RestaurantTable, TableStatus
from tests.conftest import ADMIN, CASHIER, MODERATOR, OTHER_SERVER, SERVER, fetch


async def _age_lock(session_maker, table_id, minutes):
    async with session_maker() as session:
        async with session.begin():
            table = await session.get(RestaurantTable, table_id)
            table.locked_at = utcnow() - timedelta(minutes=minutes)


@pytest.mark.anyio
async def test_acquire_free_table(session_maker, locks, seed, audit_sink):
    async with session_maker() as session:
        table = await locks.acquire(session, seed.table, SERVER)

    assert table.locked_by_user_id == SERVER.id
    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id == SERVER.id
    assert stored.locked_at is not None
    assert stored.status == TableStatus.AVAILABLE
    assert audit_sink.actions() == ["TABLE_LOCKED"]


@pytest.mark.anyio
async def test_holder_can_reacquire_and_refresh(session_maker, locks, seed):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)
    await _age_lock(session_maker, seed.table, 10)

    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert utcnow() - as_utc(stored.locked_at) < timedelta(minutes=1)


@pytest.mark.anyio
async def test_fresh_lock_blocks_other_actor(session_maker, locks, seed, audit_sink):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)
    await _age_lock(session_maker, seed.table, 10)

    async with session_maker() as session:
        with pytest.raises(Conflict):
            await locks.acquire(session, seed.table, OTHER_SERVER)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id == SERVER.id
    assert audit_sink.actions() == ["TABLE_LOCKED"]


@pytest.mark.anyio
async def test_stale_lock_is_reclaimed(session_maker, locks, seed):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)
    await _age_lock(session_maker, seed.table, 31)

    async with session_maker() as session:
        await locks.acquire(session, seed.table, OTHER_SERVER)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id == OTHER_SERVER.id


@pytest.mark.anyio
async def test_acquire_missing_or_inactive_table(session_maker, locks, seed):
    async with session_maker() as session:
        with pytest.raises(NotFound):
            await locks.acquire(session, 999, SERVER)

    async with session_maker() as session:
        async with session.begin():
            table = await session.get(RestaurantTable, seed.table2)
            table.is_active = False

    async with session_maker() as session:
        with pytest.raises(NotFound):
            await locks.acquire(session, seed.table2, SERVER)


@pytest.mark.anyio
async def test_release_by_holder(session_maker, locks, seed, audit_sink):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)
        await locks.release(session, seed.table, SERVER)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id is None
    assert stored.locked_at is None
    assert audit_sink.actions() == ["TABLE_LOCKED", "TABLE_UNLOCKED"]


@pytest.mark.anyio
async def test_release_by_non_holder_is_forbidden(session_maker, locks, seed):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)

    async with session_maker() as session:
        with pytest.raises(Forbidden):
            await locks.release(session, seed.table, OTHER_SERVER)

    # Admins release through the override capability
    async with session_maker() as session:
        await locks.release(session, seed.table, ADMIN)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id is None


@pytest.mark.anyio
async def test_override_flag_needs_override_right(session_maker, locks, seed):
    async with session_maker() as session:
        await locks.acquire(session, seed.table, SERVER)
        with pytest.raises(Forbidden):
            await locks.release(session, seed.table, CASHIER, admin_override=True)
        with pytest.raises(Forbidden):
            await locks.release(session, seed.table, ADMIN, admin_override=False)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id == SERVER.id

    async with session_maker() as session:
        await locks.release(session, seed.table, ADMIN, admin_override=True)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id is None


@pytest.mark.anyio
async def test_release_with_active_order_conflicts(session_maker, locks, ledger, seed):
    async with session_maker() as session:
        await ledger.create_order(session, SERVER, table_id=seed.table)

    async with session_maker() as session:
        with pytest.raises(Conflict):
            await locks.release(session, seed.table, SERVER)

    stored = await fetch(session_maker, RestaurantTable, seed.table)
    assert stored.locked_by_user_id == SERVER.id


@pytest.mark.anyio
async def test_set_status_and_deactivate(session_maker, table_admin, ledger, seed, audit_sink):
    async with session_maker() as session:
        with pytest.raises(Forbidden):
            await table_admin.set_status(session, seed.table2, SERVER, TableStatus.MAINTENANCE)
        with pytest.raises(BadRequest):
            await table_admin.set_status(session, seed.table2, MODERATOR, TableStatus.OCCUPIED)
        table = await table_admin.set_status(session, seed.table2, MODERATOR, TableStatus.RESERVED)
    assert table.status == TableStatus.RESERVED

    async with session_maker() as session:
        await ledger.create_order(session, SERVER, table_id=seed.table)
    async with session_maker() as session:
        with pytest.raises(Conflict):
            await table_admin.set_status(session, seed.table, ADMIN, TableStatus.AVAILABLE)
        with pytest.raises(BadRequest):
            await table_admin.deactivate(session, seed.table, ADMIN)

    async with session_maker() as session:
        await table_admin.deactivate(session, seed.table3, ADMIN)
    stored = await fetch(session_maker, RestaurantTable, seed.table3)
    assert stored.is_active is False
    assert "TABLE_STATUS_CHANGED" in audit_sink.actions()
    assert audit_sink.actions()[-1] == "TABLE_DEACTIVATED"
