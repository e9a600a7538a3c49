"""Celery application configuration."""

from celery import Celery
from celery.signals import worker_process_init

from pavilion.core.config import settings
from pavilion.core.logging import setup_logging
from pavilion.core.tracing import configure_tracing

celery_app = Celery(
    "pavilion",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.UPLOAD_TASK_TIME_LIMIT_SECONDS,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "pavilion.ingest.process_upload": {"queue": "ingest"},
        "pavilion.ingest.fail_stale_uploads": {"queue": "maintenance"},
        "pavilion.ingest.cleanup_temp_dirs": {"queue": "maintenance"},
    },
    beat_schedule={
        "fail-stale-uploads": {
            "task": "pavilion.ingest.fail_stale_uploads",
            "schedule": 900.0,  # Every 15 minutes
        },
        "cleanup-temp-dirs": {
            "task": "pavilion.ingest.cleanup_temp_dirs",
            "schedule": 3600.0,  # Every hour
        },
    },
)

celery_app.autodiscover_tasks(["pavilion.modules.ingest"])


@worker_process_init.connect
def configure_worker_process(**kwargs) -> None:
    """Install logging and tracing in each forked worker process."""
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    configure_tracing(
        settings.PROJECT_NAME,
        settings.VERSION,
        console_export=settings.TRACING_CONSOLE_EXPORT,
    )
