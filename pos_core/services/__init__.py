"""
                        Services Module

Contains the POS core business services. Each factory returns one cached
instance wired to the configured audit sink and the default role policy.

Services:
    - tables: table lock manager and table administration
    - ledger: order and order-item lifecycle
    - settlement: single-shot order payment
    - audit: best-effort audit sinks (memory / Celery)
    - audit_export: thread-safe Excel audit workbook

Usage:
    from pos_core.services import get_order_ledger

    ledger = get_order_ledger()
    order = await ledger.create_order(session, actor, table_id=4)
"""

import logging
from functools import lru_cache

from pos_core.services.audit import get_audit_sink, reset_audit_sink
from pos_core.services.catalog import CatalogGate
from pos_core.services.ledger import OrderLedger
from pos_core.services.settlement import SettlementEngine
from pos_core.services.tables import TableAdmin, TableLockManager

logger = logging.getLogger(__name__)


@lru_cache()
def get_table_lock_manager() -> TableLockManager:
    return TableLockManager(audit_sink=get_audit_sink())


@lru_cache()
def get_table_admin() -> TableAdmin:
    return TableAdmin(locks=get_table_lock_manager(), audit_sink=get_audit_sink())


@lru_cache()
def get_order_ledger() -> OrderLedger:
    return OrderLedger(
        catalog=CatalogGate(),
        locks=get_table_lock_manager(),
        audit_sink=get_audit_sink(),
    )


@lru_cache()
def get_settlement_engine() -> SettlementEngine:
    return SettlementEngine(ledger=get_order_ledger(), audit_sink=get_audit_sink())


def reset_services() -> None:
    """
    Clear every cached service instance, the audit sink included.

    The next factory call rebuilds from the current settings.
    """
    get_settlement_engine.cache_clear()
    get_order_ledger.cache_clear()
    get_table_admin.cache_clear()
    get_table_lock_manager.cache_clear()
    reset_audit_sink()
    logger.debug("Service caches cleared")


__all__ = [
    "get_table_lock_manager",
    "get_table_admin",
    "get_order_ledger",
    "get_settlement_engine",
    "reset_services",
    "CatalogGate",
    "OrderLedger",
    "SettlementEngine",
    "TableAdmin",
    "TableLockManager",
]
