"""
Alert schemas.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel, Field

from webhook_pipeline.models.database.alerts import NotificationType


class AlertCreate(BaseModel):
    """Schema for creating a dataset alert."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    condition: Dict[str, Any] = Field(
        ...,
        description='{"calculated_field": "revenue", "operator": ">", "value": 1000} or '
                    '{"field": "amount", "aggregation": "sum", "time_window": "daily", "operator": ">", "value": 1000}'
    )
    cooldown_minutes: int = Field(60, ge=0, le=60 * 24 * 30)
    notification_type: NotificationType = NotificationType.IN_APP
    notification_config: Dict[str, Any] = Field(default_factory=dict)


class AlertResponse(BaseModel):
    """Schema for alert response."""
    id: str
    dataset_id: str
    name: str
    description: Optional[str] = None
    condition: Dict[str, Any]
    cooldown_minutes: int
    last_triggered_at: Optional[datetime] = None
    notification_type: NotificationType
    notification_config: Dict[str, Any]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AlertEventResponse(BaseModel):
    """Schema for alert event response."""
    id: str
    alert_id: str
    triggered_at: datetime
    value: Optional[float] = None
    notification_type: NotificationType
    delivered: bool
    error: Optional[str] = None

    class Config:
        from_attributes = True


class AlertEvaluationResponse(BaseModel):
    """Schema for one alert evaluation result."""
    alert_id: str
    name: str
    triggered: bool
    value: Optional[Any] = None
    suppressed: bool = False
    dispatched: bool = False
    delivered: Optional[bool] = None
    error: Optional[str] = None


class AlertEvaluationListResponse(BaseModel):
    """Schema for an evaluation run."""
    dry_run: bool
    results: List[AlertEvaluationResponse]
