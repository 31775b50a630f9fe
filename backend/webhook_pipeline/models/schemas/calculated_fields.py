"""
Calculated field schemas.
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from webhook_pipeline.models.database.calculated_fields import (
    FormulaType, TimeScope, ComparisonPeriod, RefreshMode
)


class CalculatedFieldCreate(BaseModel):
    """Schema for creating a calculated field."""
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    formula_type: FormulaType
    formula: str = Field(..., min_length=1, max_length=1000, description='e.g. SUM(amount WHERE status = "paid")')
    time_scope: TimeScope = TimeScope.ALL_TIME
    comparison_period: Optional[ComparisonPeriod] = None
    refresh_mode: RefreshMode = RefreshMode.LIVE


class CalculatedFieldResponse(BaseModel):
    """Schema for calculated field response."""
    id: str
    dataset_id: str
    slug: str
    name: str
    description: Optional[str] = None
    formula_type: FormulaType
    formula: str
    time_scope: TimeScope
    comparison_period: Optional[ComparisonPeriod] = None
    refresh_mode: RefreshMode
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CalculatedValueResponse(BaseModel):
    """Schema for an evaluated calculated field."""
    slug: str
    current: Optional[float] = None
    previous: Optional[float] = None
    percent_change: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    cached: bool = False
