"""
Celery application.

The API enqueues through ``celery_app``; the worker and beat load it with
``celery -A tasks worker`` / ``celery -A tasks beat``.
"""
from celery import Celery

from celerybeat_schedule import beat_schedule
from core.config import settings

celery_app = Celery("challngr")
celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    beat_schedule=beat_schedule,
)

from . import competition_tasks, notification_tasks  # noqa: E402,F401

__all__ = ["celery_app"]
