"""
Webhook connection database model.
"""
import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base, enum_column_type


class SignatureScheme(str, enum.Enum):
    """How inbound deliveries prove authenticity."""
    HMAC_SHA256 = "hmac-sha256"
    SHARED_SECRET = "shared-secret"
    NONE = "none"


class Connection(Base):
    """An external source allowed to push payloads into a dataset."""

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Unassigned connections retain payloads until a dataset is attached
    dataset_id = Column(String(36), ForeignKey("datasets.id", ondelete="SET NULL"), nullable=True, index=True)

    # Authenticity
    signature_scheme = Column(enum_column_type(SignatureScheme), default=SignatureScheme.HMAC_SHA256, nullable=False)
    signing_secret = Column(String(255), nullable=True)
    signature_header = Column(String(100), nullable=True)  # Overrides the scheme's default header

    rate_limit_per_minute = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Delivery statistics, updated after each successful delivery
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    delivery_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
