"""
Calculated field database model.
"""
import enum
import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base, enum_column_type


class FormulaType(str, enum.Enum):
    """Shape a formula must have."""
    AGGREGATE = "aggregate"
    RATIO = "ratio"
    EXPRESSION = "expression"


class TimeScope(str, enum.Enum):
    """Window the formula is evaluated over."""
    ALL_TIME = "all_time"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ComparisonPeriod(str, enum.Enum):
    """Window the current value is compared against."""
    PREVIOUS_PERIOD = "previous_period"
    PREVIOUS_YEAR = "previous_year"


class RefreshMode(str, enum.Enum):
    """Whether results are recomputed on every read or cached."""
    LIVE = "live"
    CACHED = "cached"


class CalculatedField(Base):
    """A dataset-level metric derived from stored records."""

    __tablename__ = "calculated_fields"
    __table_args__ = (
        UniqueConstraint("dataset_id", "slug", name="uq_calculated_fields_dataset_slug"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    dataset_id = Column(String(36), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)
    slug = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    formula_type = Column(enum_column_type(FormulaType), nullable=False)
    formula = Column(Text, nullable=False)
    time_scope = Column(enum_column_type(TimeScope), default=TimeScope.ALL_TIME, nullable=False)
    comparison_period = Column(enum_column_type(ComparisonPeriod), nullable=True)
    refresh_mode = Column(enum_column_type(RefreshMode), default=RefreshMode.LIVE, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
