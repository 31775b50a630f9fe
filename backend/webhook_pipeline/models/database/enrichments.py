"""
Enrichment rule and enriched entity database models.
"""
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Boolean, UniqueConstraint

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base


class DatasetEnrichment(Base):
    """Rule joining a dataset's records onto entities of a target type."""

    __tablename__ = "dataset_enrichments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    dataset_id = Column(String(36), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)

    match_field = Column(String(100), nullable=False)  # Record slug holding the key value
    target_entity = Column(String(100), nullable=False)  # e.g. "customer", "order"
    target_field = Column(String(100), nullable=False)  # Attribute the key is matched on

    # [{"source_field": "<record slug>", "target_column": "<attribute>"}]
    field_mappings = Column(JSON, nullable=False, default=list)
    auto_create = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class EnrichedEntity(Base):
    """Generic target row updated or created by enrichment."""

    __tablename__ = "enriched_entities"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "entity_type", "key_field", "key_value",
            name="uq_enriched_entities_key",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(100), nullable=False)
    key_field = Column(String(100), nullable=False)
    key_value = Column(String(500), nullable=False)
    attributes = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
