"""
Post-response follow-up work for accepted deliveries.

Each stage runs in its own session and is isolated: a failing stage is
logged and the remaining stages still run. None of them touch the record's
status.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.database import get_db_session
from webhook_pipeline.core.exceptions import DownstreamError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.services.alerting.evaluator import alert_evaluator
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.services.connections import ConnectionRegistry
from webhook_pipeline.services.enrichment import EnrichmentEngine
from webhook_pipeline.services.ingestion import IngestOutcome

logger = get_logger(__name__)


async def run_followups(
    record_id: str,
    connection_id: str,
    tenant_id: str,
    dataset_id: Optional[str],
    extracted_data: Dict[str, Any],
    received_at: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Update connection statistics, invalidate caches, enrich and evaluate alerts.

    Returns:
        Summary of what ran, for task results and tests
    """
    summary: Dict[str, Any] = {"record_id": record_id, "errors": []}
    delivered_at = datetime.fromisoformat(received_at) if received_at else utcnow()

    try:
        async with get_db_session() as db:
            await ConnectionRegistry.record_delivery(db, connection_id, delivered_at)
    except Exception as e:
        _report(summary, DownstreamError("statistics", str(e)))

    if not dataset_id:
        return summary

    try:
        summary["cache_keys_cleared"] = await CalculatedFieldService.invalidate_dataset(dataset_id)
    except Exception as e:
        _report(summary, DownstreamError("cache", str(e)))

    try:
        async with get_db_session() as db:
            results = await EnrichmentEngine.process(db, tenant_id, dataset_id, extracted_data)
        summary["enrichments"] = [result.action for result in results]
    except Exception as e:
        _report(summary, DownstreamError("enrichment", str(e)))

    try:
        async with get_db_session() as db:
            evaluations = await alert_evaluator.evaluate_dataset(db, dataset_id)
        summary["alerts_dispatched"] = sum(1 for evaluation in evaluations if evaluation.dispatched)
    except Exception as e:
        _report(summary, DownstreamError("alerts", str(e)))

    return summary


def _report(summary: Dict[str, Any], error: DownstreamError) -> None:
    logger.error(f"Follow-up for record {summary['record_id']} failed at {error}")
    summary["errors"].append(str(error))


def schedule_followups(background_tasks: BackgroundTasks, outcome: IngestOutcome) -> None:
    """Hand follow-ups to the configured background backend."""
    if not outcome.needs_followups:
        return

    payload = outcome.followup_payload()
    if settings.BACKGROUND_BACKEND == "celery":
        # Imported here so the API process does not need a broker unless configured
        from webhook_pipeline.tasks.followups import process_delivery_followups
        process_delivery_followups.delay(payload)
        return

    background_tasks.add_task(run_followups, **payload)
