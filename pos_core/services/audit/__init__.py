"""
Audit Sink Factory

Provides a single entry point for obtaining the audit sink. The rest of
the core only sees ``BaseAuditSink``.

Environment Switching:
    - ENV_MODE=development -> MemoryAuditSink
    - ENV_MODE=staging/production -> CeleryAuditSink
    - AUDIT_SINK=memory|celery overrides the environment default
"""

import logging
from functools import lru_cache

from pos_core.core.config import AuditSinkKind, get_settings
from pos_core.services.audit.base import AuditEvent, BaseAuditSink, emit
from pos_core.services.audit.memory import MemoryAuditSink
from pos_core.services.audit.queued import CeleryAuditSink

logger = logging.getLogger(__name__)


@lru_cache()
def get_audit_sink() -> BaseAuditSink:
    """
    Get the configured audit sink instance.

    The instance is cached so every component emits into the same sink.
    """
    settings = get_settings()

    if settings.resolved_audit_sink == AuditSinkKind.MEMORY:
        logger.info("Audit Sink: Using MemoryAuditSink")
        return MemoryAuditSink()

    logger.info(f"Audit Sink: Using CeleryAuditSink ({settings.env_mode.value} mode)")
    return CeleryAuditSink()


def reset_audit_sink() -> None:
    """Clear the cached sink instance."""
    get_audit_sink.cache_clear()
    logger.debug("Audit sink cache cleared")


__all__ = [
    "get_audit_sink",
    "reset_audit_sink",
    "emit",
    "AuditEvent",
    "BaseAuditSink",
    "MemoryAuditSink",
    "CeleryAuditSink",
]
