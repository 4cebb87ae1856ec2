"""Celery configuration and app."""

from celery import Celery
from celery.schedules import crontab

from harness.core.config import settings

celery_app = Celery(
    "harness",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=60 * 60,  # 1 hour max for a full sweep
    task_soft_time_limit=55 * 60,

    # Result settings
    result_expires=3600,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Task routing
    task_routes={
        "harness.workers.cache_gc.*": {"queue": "cache"},
    },
    task_default_queue="default",

    # Task acknowledgement
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Beat scheduler configuration
    beat_schedule={
        # Nightly age-based eviction of cached working copies
        "nightly-cache-eviction": {
            "task": "harness.workers.cache_gc.evict_stale_repositories",
            "schedule": crontab(hour=settings.cache_gc_hour, minute=0),
            "options": {"queue": "cache"},
        },
    },
)

# Import worker modules explicitly to register tasks with Celery.
import harness.workers.cache_gc  # noqa: F401, E402
