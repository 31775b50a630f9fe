"""
Enrichment schemas.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel, Field


class FieldMapping(BaseModel):
    """Copy a record value onto an entity attribute."""
    source_field: str = Field(..., min_length=1)
    target_column: str = Field(..., min_length=1)


class EnrichmentCreate(BaseModel):
    """Schema for creating an enrichment rule."""
    match_field: str = Field(..., min_length=1, max_length=100)
    target_entity: str = Field(..., min_length=1, max_length=100)
    target_field: str = Field(..., min_length=1, max_length=100)
    field_mappings: List[FieldMapping] = Field(default_factory=list)
    auto_create: bool = False


class EnrichmentResponse(BaseModel):
    """Schema for enrichment rule response."""
    id: str
    dataset_id: str
    match_field: str
    target_entity: str
    target_field: str
    field_mappings: List[Dict[str, Any]]
    auto_create: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class EnrichedEntityResponse(BaseModel):
    """Schema for enriched entity response."""
    id: str
    entity_type: str
    key_field: str
    key_value: str
    attributes: Dict[str, Any]
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
