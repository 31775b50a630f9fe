"""
Alert API endpoints.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.api.deps import get_tenant_id, get_tenant_dataset
from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.schemas.alerts import (
    AlertCreate, AlertResponse, AlertEventResponse,
    AlertEvaluationResponse, AlertEvaluationListResponse
)
from webhook_pipeline.services.alerting.alert_service import AlertService
from webhook_pipeline.services.alerting.evaluator import alert_evaluator

router = APIRouter(tags=["Alerts"])


@router.post(
    "/datasets/{dataset_id}/alerts",
    response_model=AlertResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_alert(
    payload: AlertCreate,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Create an alert on a dataset."""
    alert = await AlertService.create_alert(
        db=db,
        tenant_id=dataset.tenant_id,
        dataset_id=dataset.id,
        name=payload.name,
        description=payload.description,
        condition=payload.condition,
        notification_type=payload.notification_type,
        notification_config=payload.notification_config,
        cooldown_minutes=payload.cooldown_minutes,
    )
    return AlertResponse.model_validate(alert)


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    dataset_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List alerts, optionally for one dataset."""
    alerts = await AlertService.list_alerts(db, tenant_id, dataset_id=dataset_id, is_active=is_active)
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.get("/alerts/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Get an alert."""
    alert = await AlertService.get_alert(db, tenant_id, alert_id)
    return AlertResponse.model_validate(alert)


@router.get("/alerts/{alert_id}/events", response_model=List[AlertEventResponse])
async def list_alert_events(
    alert_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Alert history, newest first."""
    await AlertService.get_alert(db, tenant_id, alert_id)
    events = await AlertService.list_events(db, alert_id, limit=limit, offset=offset)
    return [AlertEventResponse.model_validate(event) for event in events]


@router.post("/datasets/{dataset_id}/alerts/evaluate", response_model=AlertEvaluationListResponse)
async def evaluate_alerts(
    dry_run: bool = False,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """
    Evaluate the dataset's active alerts now.

    With dry_run the conditions are computed but nothing is dispatched
    and cooldowns are left untouched.
    """
    evaluations = await alert_evaluator.evaluate_dataset(db, dataset.id, dry_run=dry_run)
    return AlertEvaluationListResponse(
        dry_run=dry_run,
        results=[AlertEvaluationResponse(**evaluation.to_dict()) for evaluation in evaluations]
    )
