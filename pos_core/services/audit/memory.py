"""
In-Memory Audit Sink

Keeps emitted events in a list and logs them. Used in development mode
and by the test suite to assert on the audit trail.
"""

import logging

from pos_core.services.audit.base import AuditEvent, BaseAuditSink

logger = logging.getLogger(__name__)


class MemoryAuditSink(BaseAuditSink):
    """
    Audit sink that stores events in process memory.

    Attributes:
        events: Every event recorded so far, oldest first
    """

    def __init__(self):
        self.events: list[AuditEvent] = []

    @property
    def provider_name(self) -> str:
        return "memory"

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)
        logger.debug(
            f"Audit: {event.action} {event.entity_type}#{event.entity_id} "
            f"by actor {event.actor_id}"
        )

    def actions(self) -> list[str]:
        """Action names in emission order."""
        return [e.action for e in self.events]

    def clear(self) -> None:
        self.events.clear()

    async def health_check(self) -> bool:
        return True
