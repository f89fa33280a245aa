"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend for
background audit delivery.
"""

from celery import Celery

from pos_core.core.config import get_settings

REDIS_URL = get_settings().redis_url

celery_app = Celery(
    'pos_audit_worker',
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=['pos_core.tasks']
)

celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Workbook writes are serialized by a file lock; one task at a time per process
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    result_expires=3600,

    # Redeliver events if a worker dies mid-export
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
