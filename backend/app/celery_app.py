"""
Celery application for duplicate-post detection.

Runs post embedding, per-post merge checks and the periodic merge sweep.
LLM-bound tasks go to the ``merge`` queue so they can be rate limited with
their own worker concurrency:

    celery -A app.celery_app worker -Q celery,merge -c 2
    celery -A app.celery_app beat
"""
import logging
from datetime import timedelta

from celery import Celery
from celery.signals import worker_process_init

from .config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "feedback_portal",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.merge_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery_timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=7200,  # Full sweeps over large portals
    task_soft_time_limit=6900,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    result_expires=86400,
    task_routes={
        "app.tasks.merge_tasks.check_post_merge_candidates": {"queue": "merge"},
        "app.tasks.merge_tasks.sweep_merge_candidates": {"queue": "merge"},
    },
)

if settings.merge_sweep_enabled:
    celery_app.conf.beat_schedule = {
        # Re-checks posts whose last check is missing or stale, then expires
        # old pending suggestions.
        "merge-suggestion-sweep": {
            "task": "app.tasks.merge_tasks.sweep_merge_candidates",
            "schedule": timedelta(minutes=settings.merge_sweep_interval_minutes),
            "options": {"queue": "merge"},
        },
    }
else:
    logger.warning("Periodic merge sweep disabled via MERGE_SWEEP_ENABLED=false")


@worker_process_init.connect
def _reset_redis_after_fork(**kwargs):
    """Forked workers must not share the parent's Redis sockets."""
    from .services.redis_pool import reset_pool

    reset_pool()


if __name__ == "__main__":
    celery_app.start()
