"""
Celery-backed Audit Sink

Hands each event to the ``export_audit_event`` Celery task. The broker
publish happens outside the business transaction; if Redis is down the
publish raises and ``emit`` logs the failure.
"""

import asyncio
import logging

import redis

from pos_core.core.config import get_settings
from pos_core.services.audit.base import AuditEvent, BaseAuditSink

logger = logging.getLogger(__name__)


class CeleryAuditSink(BaseAuditSink):
    """Audit sink that enqueues events for the background worker."""

    @property
    def provider_name(self) -> str:
        return "celery"

    async def record(self, event: AuditEvent) -> None:
        # Imported here so the worker module is only loaded when used
        from pos_core.tasks import export_audit_event

        payload = event.to_dict()
        # Broker publish is blocking I/O
        result = await asyncio.to_thread(export_audit_event.delay, payload)
        logger.debug(f"Audit {event.action} queued as task {result.id}")

    async def health_check(self) -> bool:
        settings = get_settings()
        try:
            client = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
            await asyncio.to_thread(client.ping)
            client.close()
            return True
        except redis.RedisError as e:
            logger.error(f"Audit broker health check failed: {e}")
            return False
