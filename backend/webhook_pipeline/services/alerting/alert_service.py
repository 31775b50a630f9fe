"""
Alert service for managing dataset alerts.
"""
from typing import List, Dict, Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.exceptions import NotFoundError, ValidationError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.models.database.alerts import DatasetAlert, AlertEvent, NotificationType
from webhook_pipeline.models.database.calculated_fields import TimeScope
from webhook_pipeline.services import formulas

logger = get_logger(__name__)

_TIME_WINDOW_ALIASES = {
    "all": TimeScope.ALL_TIME,
    "day": TimeScope.DAILY,
    "week": TimeScope.WEEKLY,
    "month": TimeScope.MONTHLY,
}


def resolve_time_window(value: Optional[str]) -> TimeScope:
    if not value:
        return TimeScope.ALL_TIME
    return _TIME_WINDOW_ALIASES.get(value, None) or TimeScope(value)


def validate_condition(condition: Dict[str, Any]) -> None:
    """
    Check an alert condition is evaluable.

    Raises:
        ValidationError: Condition is malformed
    """
    operator = condition.get("operator")
    if operator not in formulas.COMPARISON_OPERATORS:
        raise ValidationError(f"Unknown operator '{operator}'")
    if "value" not in condition:
        raise ValidationError("Condition needs a comparison value")
    try:
        resolve_time_window(condition.get("time_window"))
    except (TypeError, ValueError):
        raise ValidationError(f"Unknown time window '{condition.get('time_window')}'")

    if condition.get("calculated_field"):
        return

    aggregation = (condition.get("aggregation") or "count").lower()
    if aggregation not in formulas.AGGREGATE_FUNCTIONS:
        raise ValidationError(f"Unknown aggregation '{aggregation}'")
    if aggregation != "count" and not condition.get("field"):
        raise ValidationError(f"Aggregation '{aggregation}' needs a field")

    for item in condition.get("filters") or []:
        if not isinstance(item, dict) or not item.get("field"):
            raise ValidationError("Each filter needs a field")
        if item.get("operator", "=") not in formulas.COMPARISON_OPERATORS:
            raise ValidationError(f"Unknown filter operator '{item.get('operator')}'")


class AlertService:
    """Service for managing dataset alerts."""

    @staticmethod
    async def create_alert(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: str,
        name: str,
        condition: Dict[str, Any],
        notification_type: NotificationType = NotificationType.IN_APP,
        notification_config: Optional[Dict[str, Any]] = None,
        cooldown_minutes: int = 60,
        description: Optional[str] = None,
    ) -> DatasetAlert:
        """
        Create a dataset alert.

        Args:
            db: Database session
            tenant_id: Owning tenant
            dataset_id: Dataset the condition is evaluated over
            name: Alert name
            condition: Structured condition (calculated field or raw aggregate)
            notification_type: Channel to notify through
            notification_config: Channel settings (addresses, URLs)
            cooldown_minutes: Minimum gap between dispatches
            description: Description

        Returns:
            Created alert
        """
        validate_condition(condition)

        alert = DatasetAlert(
            tenant_id=tenant_id,
            dataset_id=dataset_id,
            name=name,
            description=description,
            condition=condition,
            cooldown_minutes=cooldown_minutes,
            notification_type=notification_type,
            notification_config=notification_config or {},
        )

        db.add(alert)
        await db.commit()
        await db.refresh(alert)

        logger.info(f"Created alert {alert.id} ({name}) on dataset {dataset_id}")
        return alert

    @staticmethod
    async def get_alert(db: AsyncSession, tenant_id: str, alert_id: str) -> DatasetAlert:
        result = await db.execute(
            select(DatasetAlert).where(
                DatasetAlert.id == alert_id,
                DatasetAlert.tenant_id == tenant_id,
            )
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError("Alert not found")
        return alert

    @staticmethod
    async def list_alerts(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[DatasetAlert]:
        query = select(DatasetAlert).where(DatasetAlert.tenant_id == tenant_id)
        if dataset_id:
            query = query.where(DatasetAlert.dataset_id == dataset_id)
        if is_active is not None:
            query = query.where(DatasetAlert.is_active.is_(is_active))
        result = await db.execute(query.order_by(DatasetAlert.created_at))
        return list(result.scalars().all())

    @staticmethod
    async def list_events(
        db: AsyncSession,
        alert_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AlertEvent]:
        result = await db.execute(
            select(AlertEvent)
            .where(AlertEvent.alert_id == alert_id)
            .order_by(AlertEvent.triggered_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())
