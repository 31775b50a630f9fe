"""
Alert database models.
"""
import enum
import uuid

from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, JSON, Boolean

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base, enum_column_type


class NotificationType(str, enum.Enum):
    """Notification channels."""
    EMAIL = "email"
    WEBHOOK = "webhook"
    SLACK = "slack"
    IN_APP = "in_app"


class DatasetAlert(Base):
    """Condition over a dataset that notifies when it holds."""

    __tablename__ = "dataset_alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    dataset_id = Column(String(36), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # {"calculated_field": slug, "operator": ">", "value": 100} or
    # {"field": slug, "aggregation": "sum", "time_window": "daily", "filters": [...], "operator": ..., "value": ...}
    condition = Column(JSON, nullable=False)

    cooldown_minutes = Column(Integer, default=60, nullable=False)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)

    notification_type = Column(enum_column_type(NotificationType), default=NotificationType.IN_APP, nullable=False)
    notification_config = Column(JSON, nullable=False, default=dict)  # recipients, url, webhook_url

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AlertEvent(Base):
    """One dispatch attempt of an alert."""

    __tablename__ = "alert_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    alert_id = Column(String(36), ForeignKey("dataset_alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)

    triggered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    value = Column(Float, nullable=True)
    notification_type = Column(enum_column_type(NotificationType), nullable=False)
    delivered = Column(Boolean, default=False, nullable=False)
    error = Column(Text, nullable=True)
