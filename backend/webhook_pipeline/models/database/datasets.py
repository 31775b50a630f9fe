"""
Dataset and field schema database models.
"""
import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base, enum_column_type


class FieldType(str, enum.Enum):
    """Value type a field is coerced to during extraction."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"


class Dataset(Base):
    """A typed collection of records fed by one or more connections."""

    __tablename__ = "datasets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    retention_days = Column(Integer, nullable=True)  # NULL keeps records forever
    realtime = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DatasetField(Base):
    """One column of a dataset's schema."""

    __tablename__ = "dataset_fields"
    __table_args__ = (
        UniqueConstraint("dataset_id", "slug", name="uq_dataset_fields_dataset_slug"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dataset_id = Column(String(36), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)
    slug = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    field_type = Column(enum_column_type(FieldType), default=FieldType.TEXT, nullable=False)

    # Exactly one of source_path (extracted) or formula (computed per record)
    source_path = Column(String(500), nullable=True)
    formula = Column(Text, nullable=True)

    is_visible = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def is_computed(self) -> bool:
        return bool(self.formula) and not self.source_path
