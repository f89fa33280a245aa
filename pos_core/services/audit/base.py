"""
Audit Sink Abstract Base Class

Defines the interface contract for audit event delivery. The core emits
one ``AuditEvent`` per successful durable mutation, after the business
transaction has committed; what happens to the event afterwards is the
sink's concern.

Design Pattern: Strategy Pattern
    - MemoryAuditSink keeps events in-process (development, tests)
    - CeleryAuditSink ships them to a background worker (staging, production)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pos_core.core.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    """
    Structured before/after record of a single mutation.

    Attributes:
        actor_id: Staff member who performed the operation
        action: Machine-readable action name (e.g. ORDER_ITEM_ADDED)
        entity_type: Kind of entity touched (table, order, order_item, payment)
        entity_id: Primary key of the entity
        before: Relevant values prior to the mutation (None on creation)
        after: Relevant values after the mutation
        occurred_at: Commit time of the mutation
    """
    actor_id: Optional[int]
    action: str
    entity_type: str
    entity_id: Optional[int]
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "occurred_at": self.occurred_at.isoformat(),
        }


class BaseAuditSink(ABC):
    """Abstract base class for audit sinks."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the sink name (e.g. "memory", "celery")."""
        pass

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        """
        Deliver one audit event.

        Implementations may raise; ``emit`` turns failures into log lines.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check that the sink can accept events."""
        pass


async def emit(sink: BaseAuditSink, event: AuditEvent) -> bool:
    """
    Best-effort delivery of ``event`` to ``sink``.

    Audit is not transactional with business state: a delivery failure is
    logged and reported as False, the committed mutation stands.
    """
    try:
        await sink.record(event)
        return True
    except Exception:
        logger.exception(
            f"Audit delivery failed: {event.action} "
            f"{event.entity_type}#{event.entity_id} via {sink.provider_name}"
        )
        return False
