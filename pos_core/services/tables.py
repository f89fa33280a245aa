"""
Table Lock Manager

Grants and releases exclusive working rights over a physical table to one
actor at a time. Every read-modify-write of a table row happens under a
row lock, so two concurrent acquire calls on the same table are
serialized by the store and the second one sees the first one's lock.

An abandoned lock (older than ``lock_stale_minutes``) may be reclaimed
by any other actor. The lock manager never changes ``status``; only the
order ledger and the table admin operations do.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pos_core.core.actors import Actor, Capability, PermissionPolicy, RolePolicy
from pos_core.core.clock import as_utc, utcnow
from pos_core.core.config import get_settings
from pos_core.core.errors import BadRequest, Conflict, Forbidden, NotFound
from pos_core.database import atomic, get_for_update
from pos_core.models import RestaurantTable, TableStatus
from pos_core.services.audit import AuditEvent, BaseAuditSink, emit, get_audit_sink

logger = logging.getLogger(__name__)


async def load_table_for_update(session: AsyncSession, table_id: int) -> RestaurantTable:
    """Lock an active table row or raise NotFound."""
    table = await get_for_update(session, RestaurantTable, table_id)
    if table is None or not table.is_active:
        raise NotFound("Table not found")
    return table


class TableLockManager:
    """Exclusive, expiring per-table working locks."""

    def __init__(
        self,
        audit_sink: Optional[BaseAuditSink] = None,
        policy: Optional[PermissionPolicy] = None,
        stale_after: Optional[timedelta] = None,
    ):
        self.audit_sink = audit_sink or get_audit_sink()
        self.policy = policy or RolePolicy()
        self.stale_after = stale_after or get_settings().lock_stale_after

    # =========================================================================
    # LOCK STATE HELPERS (callers hold the table row lock)
    # =========================================================================

    def is_stale(self, table: RestaurantTable, now: datetime) -> bool:
        locked_at = as_utc(table.locked_at)
        if locked_at is None:
            return True
        return now - locked_at >= self.stale_after

    def ensure_available(self, table: RestaurantTable, actor_id: int, now: datetime) -> None:
        """
        Raise Conflict if another actor holds a fresh lock on ``table``.

        Unlocked tables, tables locked by ``actor_id`` itself and tables
        with a stale lock all pass.
        """
        holder = table.locked_by_user_id
        if holder is None or holder == actor_id:
            return
        if not self.is_stale(table, now):
            raise Conflict(
                "Table is currently being used by another server",
                details={"table_id": table.id, "locked_by_user_id": holder},
            )
        logger.info(
            f"Reclaiming stale lock on table {table.table_number} "
            f"from user {holder} for user {actor_id}"
        )

    def grant(self, table: RestaurantTable, actor_id: int, now: datetime) -> None:
        table.locked_by_user_id = actor_id
        table.locked_at = now

    def clear(self, table: RestaurantTable) -> None:
        table.locked_by_user_id = None
        table.locked_at = None

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def acquire(self, session: AsyncSession, table_id: int, actor: Actor) -> RestaurantTable:
        """
        Lock ``table_id`` for ``actor`` (or refresh the actor's own lock).

        Raises:
            NotFound: table missing or deactivated
            Conflict: table locked by another actor less than the staleness
                threshold ago
        """
        async with atomic(session):
            table = await load_table_for_update(session, table_id)
            before = table.snapshot()
            now = utcnow()
            self.ensure_available(table, actor.id, now)
            self.grant(table, actor.id, now)
            after = table.snapshot()

        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action="TABLE_LOCKED",
            entity_type="table",
            entity_id=table.id,
            before=before,
            after=after,
        ))
        logger.info(f"Table {table.table_number} locked by {actor}")
        return table

    async def release(
        self,
        session: AsyncSession,
        table_id: int,
        actor: Actor,
        admin_override: Optional[bool] = None,
    ) -> RestaurantTable:
        """
        Clear the lock on ``table_id``.

        ``admin_override`` defaults to whether the actor holds
        TABLE_LOCK_OVERRIDE, and is only honoured for actors that hold it.

        Raises:
            NotFound: table missing or deactivated
            Forbidden: caller is not the lock holder and has no override
            Conflict: the table still has an active order attached
        """
        can_override = self.policy.allows(actor, Capability.TABLE_LOCK_OVERRIDE)
        admin_override = can_override if admin_override is None else (admin_override and can_override)

        async with atomic(session):
            table = await load_table_for_update(session, table_id)

            if table.locked_by_user_id != actor.id and not admin_override:
                raise Forbidden("Only the server who locked the table can unlock it")

            if table.current_order_id is not None and table.status == TableStatus.OCCUPIED:
                raise Conflict("Cannot unlock table with active order")

            before = table.snapshot()
            self.clear(table)
            after = table.snapshot()

        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action="TABLE_UNLOCKED",
            entity_type="table",
            entity_id=table.id,
            before=before,
            after=after,
        ))
        logger.info(f"Table {table.table_number} unlocked by {actor}")
        return table


class TableAdmin:
    """Hand-set table status and soft deactivation for managers."""

    MANUAL_STATUSES = {TableStatus.AVAILABLE, TableStatus.RESERVED, TableStatus.MAINTENANCE}

    def __init__(
        self,
        locks: Optional[TableLockManager] = None,
        audit_sink: Optional[BaseAuditSink] = None,
        policy: Optional[PermissionPolicy] = None,
    ):
        self.audit_sink = audit_sink or get_audit_sink()
        self.policy = policy or RolePolicy()
        self.locks = locks or TableLockManager(audit_sink=self.audit_sink, policy=self.policy)

    def _require_manage(self, actor: Actor) -> None:
        if not self.policy.allows(actor, Capability.TABLE_MANAGE):
            raise Forbidden("You are not allowed to manage tables")

    async def set_status(
        self,
        session: AsyncSession,
        table_id: int,
        actor: Actor,
        status: TableStatus,
    ) -> RestaurantTable:
        """
        Set a table to available, reserved or maintenance.

        ``occupied`` is only ever reached by opening an order, and a table
        with an attached order is changed only by closing that order.
        """
        self._require_manage(actor)
        status = TableStatus(status)
        if status not in self.MANUAL_STATUSES:
            raise BadRequest("Occupied status is set by opening an order")

        async with atomic(session):
            table = await load_table_for_update(session, table_id)
            if table.current_order_id is not None:
                raise Conflict("Table has an active order. Close the order first.")

            before = table.snapshot()
            table.status = status
            if status == TableStatus.AVAILABLE:
                self.locks.clear(table)
            after = table.snapshot()

        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action="TABLE_STATUS_CHANGED",
            entity_type="table",
            entity_id=table.id,
            before=before,
            after=after,
        ))
        logger.info(f"Table {table.table_number} status changed to {status.value} by {actor}")
        return table

    async def deactivate(self, session: AsyncSession, table_id: int, actor: Actor) -> RestaurantTable:
        """
        Soft-delete a table. Rejected while an order is attached.
        """
        self._require_manage(actor)

        async with atomic(session):
            table = await load_table_for_update(session, table_id)
            if table.current_order_id is not None:
                raise BadRequest("Cannot deactivate table with an active order. Close the order first.")

            before = table.snapshot()
            table.is_active = False
            table.status = TableStatus.AVAILABLE
            self.locks.clear(table)
            after = table.snapshot()

        await emit(self.audit_sink, AuditEvent(
            actor_id=actor.id,
            action="TABLE_DEACTIVATED",
            entity_type="table",
            entity_id=table.id,
            before=before,
            after=after,
        ))
        logger.info(f"Table {table.table_number} deactivated by {actor}")
        return table
