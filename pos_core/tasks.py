"""
Celery Tasks
Background delivery of audit events emitted by the POS core.
"""

import logging
import time
from datetime import datetime

from pos_core.celery_worker import celery_app
from pos_core.services.audit_export import AuditExporter

logger = logging.getLogger(__name__)


class AuditExportError(Exception):
    """Raised when the workbook could not be written; triggers a retry."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(AuditExportError, OSError),
    retry_backoff=True
)
def export_audit_event(self, event: dict) -> dict:
    """
    Append an audit event to the audit workbook.

    Args:
        event: ``AuditEvent.to_dict()`` payload

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    label = f"{event.get('action')} {event.get('entity_type')}#{event.get('entity_id')}"

    logger.info(f"Task {task_id}: exporting {label}")
    start_time = time.time()

    result = AuditExporter().export_event(event)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if not result['success']:
        logger.warning(f"Task {task_id}: {label} failed - {result['message']}")
        raise AuditExportError(result['message'])

    logger.info(f"Task {task_id}: {label} exported in {elapsed}s")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
