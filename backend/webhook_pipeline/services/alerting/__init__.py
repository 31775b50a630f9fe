"""
Dataset alerting: condition evaluation, cooldowns and notification channels.
"""
from .alert_service import AlertService
from .evaluator import AlertEvaluator, AlertEvaluation, alert_evaluator

__all__ = ["AlertService", "AlertEvaluator", "AlertEvaluation", "alert_evaluator"]
