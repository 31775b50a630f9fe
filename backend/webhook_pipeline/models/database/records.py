"""
Record and delivery log database models.
"""
import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Index

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base, enum_column_type


class RecordStatus(str, enum.Enum):
    """Processing status of a stored record."""
    PENDING = "pending"
    PROCESSED = "processed"
    PARTIAL = "partial"
    FAILED = "failed"
    UNASSIGNED = "unassigned"


class DeliveryStatus(str, enum.Enum):
    """Outcome of one inbound delivery attempt."""
    SUCCESS = "success"
    PARTIAL = "partial"
    UNASSIGNED = "unassigned"
    DUPLICATE = "duplicate"
    REJECTED_SIGNATURE = "rejected_signature"
    RATE_LIMITED = "rate_limited"
    INVALID_PAYLOAD = "invalid_payload"
    FAILED = "failed"


class DatasetRecord(Base):
    """One accepted payload and its extracted values."""

    __tablename__ = "dataset_records"
    __table_args__ = (
        # dedupe_key is NULL once the dedupe window has passed, so only live
        # keys take part in the constraint
        UniqueConstraint("connection_id", "dedupe_key", name="uq_dataset_records_connection_dedupe"),
        Index("ix_dataset_records_dataset_created", "dataset_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False, index=True)

    raw_payload = Column(JSON, nullable=False)
    extracted_data = Column(JSON, nullable=False, default=dict)

    payload_hash = Column(String(64), nullable=False, index=True)
    dedupe_key = Column(String(64), nullable=True)

    status = Column(enum_column_type(RecordStatus), default=RecordStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class DeliveryLog(Base):
    """Append-only audit entry for every delivery attempt."""

    __tablename__ = "delivery_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False, index=True)
    dataset_id = Column(String(36), nullable=True, index=True)  # Target at delivery time; not a foreign key
    record_id = Column(String(36), ForeignKey("dataset_records.id", ondelete="SET NULL"), nullable=True)

    status = Column(enum_column_type(DeliveryStatus), nullable=False, index=True)
    extracted_fields = Column(Integer, default=0, nullable=False)
    processing_time_ms = Column(Integer, default=0, nullable=False)
    payload_hash = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    headers = Column(JSON, nullable=True)  # Sanitized; secrets redacted
    ip_address = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
