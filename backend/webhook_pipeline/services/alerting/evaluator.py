"""
Alert evaluation and cooldown-gated dispatch.
"""
import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.clock import utcnow, as_utc
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import DownstreamError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.metrics import alert_dispatches_total
from webhook_pipeline.models.database.alerts import DatasetAlert, AlertEvent, NotificationType
from webhook_pipeline.services import formulas
from webhook_pipeline.services.alerting.alert_service import resolve_time_window
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.services.alerting.notifiers import (
    email_notifier, webhook_notifier, slack_notifier, in_app_notifier, SlackNotifier
)

logger = get_logger(__name__)


@dataclass
class AlertEvaluation:
    alert_id: str
    name: str
    triggered: bool
    value: Any = None
    suppressed: bool = False
    dispatched: bool = False
    delivered: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _AlertSnapshot:
    """Column values read once so rollbacks cannot expire them mid-run."""
    id: str
    tenant_id: str
    dataset_id: str
    name: str
    condition: Dict[str, Any]
    cooldown_minutes: int
    last_triggered_at: Optional[datetime]
    notification_type: NotificationType
    notification_config: Dict[str, Any]

    @classmethod
    def from_model(cls, alert: DatasetAlert) -> "_AlertSnapshot":
        return cls(
            id=alert.id,
            tenant_id=alert.tenant_id,
            dataset_id=alert.dataset_id,
            name=alert.name,
            condition=dict(alert.condition or {}),
            cooldown_minutes=alert.cooldown_minutes or 0,
            last_triggered_at=as_utc(alert.last_triggered_at),
            notification_type=NotificationType(alert.notification_type),
            notification_config=dict(alert.notification_config or {}),
        )


def describe(alert: _AlertSnapshot, value: Any) -> str:
    condition = alert.condition
    subject = condition.get("calculated_field") or condition.get("field") or "count"
    return (
        f"Alert '{alert.name}' triggered: {subject} {condition.get('operator')} "
        f"{condition.get('value')} (current value: {value})"
    )


class AlertEvaluator:
    """
    Evaluates alert conditions and dispatches notifications.

    A trigger is claimed with a conditional UPDATE on last_triggered_at, so
    only one evaluator can dispatch per cooldown period even when several
    run at once. The claim is kept even when the dispatch fails, so two
    dispatches are never closer together than the cooldown.
    """

    def __init__(
        self,
        email=None,
        webhook=None,
        slack: Optional[SlackNotifier] = None,
        in_app=None,
        timeout_seconds: Optional[float] = None,
    ):
        self.email = email or email_notifier
        self.webhook = webhook or webhook_notifier
        self.slack = slack or slack_notifier
        self.in_app = in_app or in_app_notifier
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS

    async def compute_value(self, db: AsyncSession, alert: _AlertSnapshot, now: datetime) -> Any:
        """Observed value for an alert's condition."""
        condition = alert.condition

        if condition.get("calculated_field"):
            calculated_field = await CalculatedFieldService.get_by_slug(
                db, alert.dataset_id, condition["calculated_field"]
            )
            result = await CalculatedFieldService.evaluate(db, calculated_field, now=now)
            return result.current

        return await CalculatedFieldService.evaluate_raw_aggregate(
            db,
            alert.dataset_id,
            condition.get("field"),
            condition.get("aggregation", "count"),
            time_window=resolve_time_window(condition.get("time_window")),
            filters=condition.get("filters") or [],
            now=now,
        )

    async def evaluate_dataset(
        self,
        db: AsyncSession,
        dataset_id: str,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> List[AlertEvaluation]:
        """Evaluate the active alerts of one dataset."""
        result = await db.execute(
            select(DatasetAlert).where(
                DatasetAlert.dataset_id == dataset_id,
                DatasetAlert.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return await self.evaluate_alerts(db, result.scalars().all(), now=now, dry_run=dry_run)

    async def evaluate_all(self, db: AsyncSession, now: Optional[datetime] = None) -> List[AlertEvaluation]:
        """Evaluate every active alert (scheduled run)."""
        result = await db.execute(
            select(DatasetAlert)
            .where(DatasetAlert.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        return await self.evaluate_alerts(db, result.scalars().all(), now=now)

    async def evaluate_alerts(
        self,
        db: AsyncSession,
        alerts: Sequence[DatasetAlert],
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> List[AlertEvaluation]:
        """
        Evaluate alerts and dispatch the ones that fire.

        Args:
            db: Database session
            alerts: Alerts to evaluate
            now: Evaluation time
            dry_run: Compute results without claiming or dispatching

        Returns:
            One AlertEvaluation per alert
        """
        now = now or utcnow()
        snapshots = [_AlertSnapshot.from_model(alert) for alert in alerts]
        evaluations: List[AlertEvaluation] = []
        claimed: List[tuple] = []

        for alert in snapshots:
            try:
                value = await self.compute_value(db, alert, now)
                triggered = formulas.compare(value, alert.condition.get("operator", ">"), alert.condition.get("value"))
            except Exception as e:
                # Evaluation failures never touch last_triggered_at
                logger.error(f"Alert {alert.id} evaluation failed: {e}")
                await db.rollback()
                evaluations.append(AlertEvaluation(alert.id, alert.name, False, error=str(e)))
                continue

            evaluation = AlertEvaluation(alert.id, alert.name, triggered, value=value)
            evaluations.append(evaluation)

            if not triggered:
                continue

            if dry_run:
                evaluation.suppressed = self._in_cooldown(alert, now)
                continue

            if not await self._claim(db, alert, now):
                logger.debug(f"Alert {alert.id} is in cooldown; suppressed")
                evaluation.suppressed = True
                continue

            claimed.append((alert, evaluation))

        if claimed:
            outcomes = await asyncio.gather(
                *(self._dispatch_with_timeout(alert, evaluation.value, now) for alert, evaluation in claimed)
            )
            for (alert, evaluation), error in zip(claimed, outcomes):
                await self._record(db, alert, evaluation, error, now)

        return evaluations

    @staticmethod
    def _in_cooldown(alert: _AlertSnapshot, now: datetime) -> bool:
        if alert.last_triggered_at is None:
            return False
        return now < alert.last_triggered_at + timedelta(minutes=alert.cooldown_minutes)

    @staticmethod
    async def _claim(db: AsyncSession, alert: _AlertSnapshot, now: datetime) -> bool:
        cutoff = now - timedelta(minutes=alert.cooldown_minutes)
        result = await db.execute(
            update(DatasetAlert)
            .where(
                DatasetAlert.id == alert.id,
                or_(
                    DatasetAlert.last_triggered_at.is_(None),
                    DatasetAlert.last_triggered_at <= cutoff,
                ),
            )
            .values(last_triggered_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def _dispatch_with_timeout(self, alert: _AlertSnapshot, value: Any, now: datetime) -> Optional[str]:
        """Run one dispatch; returns an error message or None on success."""
        try:
            await asyncio.wait_for(self.dispatch(alert, value, now), timeout=self.timeout_seconds)
            return None
        except asyncio.TimeoutError:
            return f"{alert.notification_type.value} notification timed out after {self.timeout_seconds}s"
        except DownstreamError as e:
            return str(e)
        except Exception as e:
            logger.error(f"Unexpected error dispatching alert {alert.id}: {e}")
            return str(e)

    async def dispatch(self, alert: _AlertSnapshot, value: Any, now: datetime) -> None:
        """Send one notification through the alert's channel."""
        config = alert.notification_config
        message = describe(alert, value)

        if alert.notification_type == NotificationType.EMAIL:
            await self.email.send(
                config.get("email_addresses") or config.get("recipients") or [],
                subject=f"[Alert] {alert.name}",
                body=message,
            )
        elif alert.notification_type == NotificationType.WEBHOOK:
            await self.webhook.send(
                config.get("webhook_url") or config.get("url"),
                {
                    "alert_id": alert.id,
                    "alert_name": alert.name,
                    "dataset_id": alert.dataset_id,
                    "condition": alert.condition,
                    "value": value,
                    "triggered_at": now.isoformat(),
                },
                headers=config.get("headers"),
            )
        elif alert.notification_type == NotificationType.SLACK:
            payload = SlackNotifier.build_payload(
                alert.name, alert.condition, value, now, channel=config.get("slack_channel")
            )
            await self.slack.send(config.get("slack_webhook_url"), payload)
        else:
            await self.in_app.send(alert.id, config.get("in_app_title") or alert.name, message)

    @staticmethod
    async def _record(
        db: AsyncSession,
        alert: _AlertSnapshot,
        evaluation: AlertEvaluation,
        error: Optional[str],
        now: datetime,
    ) -> None:
        delivered = error is None
        evaluation.dispatched = True
        evaluation.delivered = delivered
        evaluation.error = error

        db.add(AlertEvent(
            alert_id=alert.id,
            tenant_id=alert.tenant_id,
            triggered_at=now,
            value=formulas.to_number(evaluation.value),
            notification_type=alert.notification_type,
            delivered=delivered,
            error=error,
        ))

        if not delivered:
            # Claim stays: a timed-out send may still have reached the recipient
            logger.warning(f"Alert {alert.id} dispatch failed: {error}")
        else:
            logger.info(f"Alert {alert.id} dispatched via {alert.notification_type.value}")

        await db.commit()
        alert_dispatches_total.labels(
            notification_type=alert.notification_type.value,
            outcome="delivered" if delivered else "failed",
        ).inc()


# Global instance
alert_evaluator = AlertEvaluator()
