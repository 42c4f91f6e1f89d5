"""
DigiComply - Celery Configuration

Celery configuration for background compliance recalculation.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings


celery_app = Celery(
    'digicomply',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=3600,  # 1 hour, full batch
    task_soft_time_limit=3300,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=30,
    task_max_retries=settings.recalc_max_retries,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Time-driven transitions (UPCOMING -> AMBER -> RED) need a daily pass
        'daily-compliance-recalculation': {
            'task': 'app.tasks.celery_tasks.recalculate_all_entities_task',
            'schedule': crontab(hour=settings.daily_recalculation_hour, minute=0),
        },
    },
)


celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.recalculate_all_*': {'queue': 'batch'},
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
