"""
Celery beat tasks for periodic maintenance.
"""
from typing import Dict, Any
from celery.utils.log import get_task_logger

from webhook_pipeline.core.celery_app import celery_app, run_async
from webhook_pipeline.core.database import get_async_session_context
from webhook_pipeline.services.alerting.evaluator import alert_evaluator
from webhook_pipeline.services.maintenance import MaintenanceService

logger = get_task_logger(__name__)


async def _sweep_rate_limits() -> int:
    async with get_async_session_context() as db:
        return await MaintenanceService.sweep_rate_limits(db)


async def _purge_expired_records() -> int:
    async with get_async_session_context() as db:
        return await MaintenanceService.purge_expired_records(db)


async def _release_dedupe_keys() -> int:
    async with get_async_session_context() as db:
        return await MaintenanceService.release_dedupe_keys(db)


async def _evaluate_all_alerts() -> Dict[str, Any]:
    async with get_async_session_context() as db:
        evaluations = await alert_evaluator.evaluate_all(db)
    return {
        "evaluated": len(evaluations),
        "triggered": sum(1 for e in evaluations if e.triggered),
        "dispatched": sum(1 for e in evaluations if e.dispatched),
        "errors": sum(1 for e in evaluations if e.error),
    }


@celery_app.task(name="webhook_pipeline.tasks.maintenance.sweep_rate_limits")
def sweep_rate_limits() -> int:
    """Delete stale rate limit windows."""
    deleted = run_async(_sweep_rate_limits())
    logger.info(f"Rate limit sweep removed {deleted} windows")
    return deleted


@celery_app.task(name="webhook_pipeline.tasks.maintenance.purge_expired_records")
def purge_expired_records() -> int:
    """Delete records past their dataset's retention."""
    purged = run_async(_purge_expired_records())
    logger.info(f"Retention purge removed {purged} records")
    return purged


@celery_app.task(name="webhook_pipeline.tasks.maintenance.release_dedupe_keys")
def release_dedupe_keys() -> int:
    """Release dedupe keys that left the dedupe window."""
    released = run_async(_release_dedupe_keys())
    logger.info(f"Released {released} dedupe keys")
    return released


@celery_app.task(name="webhook_pipeline.tasks.maintenance.evaluate_all_alerts")
def evaluate_all_alerts() -> Dict[str, Any]:
    """Scheduled evaluation of every active alert."""
    summary = run_async(_evaluate_all_alerts())
    logger.info(f"Scheduled alert evaluation: {summary}")
    return summary
