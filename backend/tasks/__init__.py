"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute).
"""
from celery import Celery

from settings import settings

celery_app = Celery(
    "venue_visit_import",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.IMPORT_WORKER_CONCURRENCY,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_time_limit=60 * 60,  # 1 hour max per import
    task_soft_time_limit=55 * 60,
)

# Import tasks to register them
from . import import_tasks  # noqa: E402

__all__ = ["celery_app"]
