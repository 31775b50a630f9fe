"""Tests for alert evaluation, cooldowns and dispatch."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from webhook_pipeline.core.exceptions import DownstreamError, ValidationError
from webhook_pipeline.models.database.alerts import DatasetAlert, NotificationType
from webhook_pipeline.models.database.calculated_fields import FormulaType
from webhook_pipeline.services.alerting.alert_service import AlertService, validate_condition
from webhook_pipeline.services.alerting.evaluator import AlertEvaluator, resolve_time_window
from webhook_pipeline.services.alerting.notifiers import SlackNotifier
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.models.database.calculated_fields import TimeScope
from webhook_pipeline.models.database.records import RecordStatus

from .conftest import TENANT, RecordingNotifier, seed_dataset

NOW = datetime(2026, 1, 14, 15, 30, tzinfo=timezone.utc)

SUM_OVER_50 = {"field": "amount", "aggregation": "sum", "operator": ">", "value": 50}


class SlowNotifier:
    """Notifier that takes longer than the dispatch timeout."""

    def __init__(self, delay):
        self.delay = delay
        self.started = 0

    async def send(self, *args, **kwargs):
        self.started += 1
        await asyncio.sleep(self.delay)


def _evaluator(in_app=None, webhook=None, email=None, slack=None):
    return AlertEvaluator(
        email=email or RecordingNotifier(),
        webhook=webhook or RecordingNotifier(),
        slack=slack or RecordingNotifier(),
        in_app=in_app or RecordingNotifier(),
        timeout_seconds=1,
    )


async def _orders(db, amounts=(10, 20, 30)):
    return await seed_dataset(
        db, [(NOW - timedelta(minutes=5), {"amount": a}, RecordStatus.PROCESSED) for a in amounts]
    )


class TestConditionValidation:

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            validate_condition({"field": "amount", "aggregation": "sum", "operator": "~", "value": 1})

    def test_missing_value(self):
        with pytest.raises(ValidationError):
            validate_condition({"field": "amount", "aggregation": "sum", "operator": ">"})

    def test_sum_needs_field(self):
        with pytest.raises(ValidationError):
            validate_condition({"aggregation": "sum", "operator": ">", "value": 1})

    def test_count_without_field(self):
        validate_condition({"aggregation": "count", "operator": ">=", "value": 1})

    def test_unknown_time_window(self):
        with pytest.raises(ValidationError):
            validate_condition({**SUM_OVER_50, "time_window": "hourly"})

    def test_known_time_windows(self):
        validate_condition({**SUM_OVER_50, "time_window": "week"})
        validate_condition({**SUM_OVER_50, "time_window": "daily"})

    async def test_create_rejects_unknown_time_window(self, db):
        dataset = await _orders(db)
        with pytest.raises(ValidationError):
            await AlertService.create_alert(
                db, TENANT, dataset.id, "Hourly", {**SUM_OVER_50, "time_window": "hourly"}
            )

    def test_time_window_aliases(self):
        assert resolve_time_window("day") == TimeScope.DAILY
        assert resolve_time_window(None) == TimeScope.ALL_TIME
        assert resolve_time_window("monthly") == TimeScope.MONTHLY


class TestAlertEvaluator:

    async def test_triggered_alert_dispatches_once_per_cooldown(self, db):
        dataset = await _orders(db)
        alert = await AlertService.create_alert(db, TENANT, dataset.id, "Big day", SUM_OVER_50, cooldown_minutes=60)
        in_app = RecordingNotifier()
        evaluator = _evaluator(in_app=in_app)

        first = await evaluator.evaluate_dataset(db, dataset.id, now=NOW)
        second = await evaluator.evaluate_dataset(db, dataset.id, now=NOW + timedelta(minutes=10))
        third = await evaluator.evaluate_dataset(db, dataset.id, now=NOW + timedelta(minutes=61))

        assert first[0].triggered and first[0].dispatched and first[0].delivered
        assert first[0].value == 60
        assert second[0].triggered and second[0].suppressed and not second[0].dispatched
        assert third[0].dispatched
        assert len(in_app.calls) == 2

        events = await AlertService.list_events(db, alert.id)
        assert len(events) == 2
        assert all(event.delivered for event in events)

    async def test_not_triggered(self, db):
        dataset = await _orders(db, amounts=(1, 2))
        await AlertService.create_alert(db, TENANT, dataset.id, "Big day", SUM_OVER_50)
        in_app = RecordingNotifier()

        results = await _evaluator(in_app=in_app).evaluate_dataset(db, dataset.id, now=NOW)

        assert results[0].value == 3
        assert not results[0].triggered
        assert in_app.calls == []

    async def test_failed_dispatch_keeps_cooldown(self, db):
        dataset = await _orders(db)
        alert = await AlertService.create_alert(
            db, TENANT, dataset.id, "Hook", SUM_OVER_50,
            notification_type=NotificationType.WEBHOOK,
            notification_config={"webhook_url": "https://example.invalid/hook"},
        )
        failing = RecordingNotifier(error=DownstreamError("webhook", "HTTP 500"))

        results = await _evaluator(webhook=failing).evaluate_dataset(db, dataset.id, now=NOW)

        assert results[0].dispatched
        assert results[0].delivered is False
        assert "HTTP 500" in results[0].error

        refreshed = await db.get(DatasetAlert, alert.id, populate_existing=True)
        assert refreshed.last_triggered_at is not None

        retry = RecordingNotifier()
        again = await _evaluator(webhook=retry).evaluate_dataset(db, dataset.id, now=NOW + timedelta(minutes=1))
        assert again[0].suppressed and not again[0].dispatched
        assert retry.calls == []

        later = await _evaluator(webhook=retry).evaluate_dataset(db, dataset.id, now=NOW + timedelta(minutes=61))
        assert later[0].delivered
        assert len(retry.calls) == 1

        events = await AlertService.list_events(db, alert.id)
        assert [event.delivered for event in events] == [True, False]

    async def test_timed_out_dispatch_keeps_cooldown(self, db):
        dataset = await _orders(db)
        alert = await AlertService.create_alert(db, TENANT, dataset.id, "Slow", SUM_OVER_50, cooldown_minutes=30)
        slow = SlowNotifier(delay=5)
        evaluator = AlertEvaluator(
            email=RecordingNotifier(), webhook=RecordingNotifier(), slack=RecordingNotifier(),
            in_app=slow, timeout_seconds=0.05,
        )

        first = await evaluator.evaluate_dataset(db, dataset.id, now=NOW)
        second = await evaluator.evaluate_dataset(db, dataset.id, now=NOW + timedelta(minutes=1))

        assert first[0].dispatched and first[0].delivered is False
        assert "timed out" in first[0].error
        assert second[0].suppressed and not second[0].dispatched
        assert slow.started == 1

        refreshed = await db.get(DatasetAlert, alert.id, populate_existing=True)
        assert refreshed.last_triggered_at is not None
        events = await AlertService.list_events(db, alert.id)
        assert len(events) == 1
        assert events[0].delivered is False
        assert "timed out" in events[0].error

    async def test_dry_run_does_not_dispatch_or_claim(self, db):
        dataset = await _orders(db)
        alert = await AlertService.create_alert(db, TENANT, dataset.id, "Big day", SUM_OVER_50)
        in_app = RecordingNotifier()

        results = await _evaluator(in_app=in_app).evaluate_dataset(db, dataset.id, now=NOW, dry_run=True)

        assert results[0].triggered
        assert not results[0].dispatched
        assert in_app.calls == []
        assert await AlertService.list_events(db, alert.id) == []

    async def test_calculated_field_condition(self, db):
        dataset = await _orders(db)
        await CalculatedFieldService.create(
            db, TENANT, dataset.id, "revenue", "Revenue", FormulaType.AGGREGATE, "SUM(amount)",
        )
        await AlertService.create_alert(
            db, TENANT, dataset.id, "Revenue", {"calculated_field": "revenue", "operator": ">=", "value": 60},
        )

        results = await _evaluator().evaluate_dataset(db, dataset.id, now=NOW)

        assert results[0].triggered
        assert results[0].delivered

    async def test_missing_calculated_field_is_an_evaluation_error(self, db):
        dataset = await _orders(db)
        await AlertService.create_alert(
            db, TENANT, dataset.id, "Ghost", {"calculated_field": "ghost", "operator": ">", "value": 0},
        )

        results = await _evaluator().evaluate_dataset(db, dataset.id, now=NOW)

        assert not results[0].triggered
        assert results[0].error

    async def test_scheduled_run_covers_every_dataset(self, db):
        first = await _orders(db)
        second = await _orders(db, amounts=(1,))
        await AlertService.create_alert(db, TENANT, first.id, "First", SUM_OVER_50)
        await AlertService.create_alert(db, TENANT, second.id, "Second", SUM_OVER_50)

        results = await _evaluator().evaluate_all(db, now=NOW)

        assert sorted((r.name, r.triggered) for r in results) == [("First", True), ("Second", False)]

    async def test_email_dispatch_arguments(self, db):
        dataset = await _orders(db)
        await AlertService.create_alert(
            db, TENANT, dataset.id, "Mail", SUM_OVER_50,
            notification_type=NotificationType.EMAIL,
            notification_config={"email_addresses": ["ops@example.com"]},
        )
        email = RecordingNotifier()

        await _evaluator(email=email).evaluate_dataset(db, dataset.id, now=NOW)

        args, kwargs = email.calls[0]
        assert args[0] == ["ops@example.com"]
        assert kwargs["subject"] == "[Alert] Mail"


class TestSlackPayload:

    def test_build_payload(self):
        payload = SlackNotifier.build_payload(
            "Big day", {"field": "amount", "operator": ">", "value": 50}, 60, NOW, channel="#alerts",
        )
        assert payload["channel"] == "#alerts"
        assert "Big day" in payload["text"]
