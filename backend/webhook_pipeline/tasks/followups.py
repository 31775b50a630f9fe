"""
Celery task for delivery follow-ups.
"""
from typing import Dict, Any
from celery.utils.log import get_task_logger

from webhook_pipeline.core.celery_app import celery_app, run_async
from webhook_pipeline.services.followups import run_followups

logger = get_task_logger(__name__)


@celery_app.task(
    bind=True,
    name="webhook_pipeline.tasks.followups.process_delivery_followups",
    acks_late=True,
    max_retries=3,
    default_retry_delay=10,
)
def process_delivery_followups(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run follow-ups for an accepted delivery in a worker.

    Every stage is an idempotent upsert, so redelivery after a worker crash
    is safe.

    Args:
        payload: IngestOutcome.followup_payload()

    Returns:
        Follow-up summary
    """
    logger.info(f"Running follow-ups for record {payload.get('record_id')} (task {self.request.id})")
    return run_async(run_followups(**payload))
