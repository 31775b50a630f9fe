"""
Celery application for follow-up and maintenance tasks.
"""
import asyncio

from celery import Celery
from webhook_pipeline.core.config import settings

# Create Celery app
celery_app = Celery(
    "webhook_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "webhook_pipeline.tasks.followups",
        "webhook_pipeline.tasks.maintenance",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # Follow-ups are short; 5 minutes is generous
    task_soft_time_limit=240,
    worker_prefetch_multiplier=4,
    task_acks_late=True,  # Follow-ups are idempotent, safe to redeliver
    task_reject_on_worker_lost=True,
    result_expires=3600,  # Results expire after 1 hour
)

# Periodic maintenance
celery_app.conf.beat_schedule = {
    "sweep-rate-limit-windows": {
        "task": "webhook_pipeline.tasks.maintenance.sweep_rate_limits",
        "schedule": 60.0 * settings.RATE_LIMIT_WINDOW_MINUTES * settings.RATE_LIMIT_SWEEP_MULTIPLIER,
    },
    "purge-expired-records": {
        "task": "webhook_pipeline.tasks.maintenance.purge_expired_records",
        "schedule": 3600.0,
    },
    "release-dedupe-keys": {
        "task": "webhook_pipeline.tasks.maintenance.release_dedupe_keys",
        "schedule": 3600.0,
    },
    "evaluate-alerts": {
        "task": "webhook_pipeline.tasks.maintenance.evaluate_all_alerts",
        "schedule": float(settings.ALERT_EVALUATION_INTERVAL_SECONDS),
    },
}


_worker_loop = None


def run_async(coro):
    """
    Run a coroutine to completion inside a worker process.

    Workers reuse one event loop per process so async engine connections
    stay bound to the loop that created them.
    """
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop.run_until_complete(coro)
