"""
Dataset, field, record and delivery log schemas.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel, Field

from webhook_pipeline.models.database.datasets import FieldType
from webhook_pipeline.models.database.records import RecordStatus, DeliveryStatus


class DatasetCreate(BaseModel):
    """Schema for creating a dataset."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    retention_days: Optional[int] = Field(None, ge=1, description="Omit to keep records forever")
    realtime: bool = False


class DatasetResponse(BaseModel):
    """Schema for dataset response."""
    id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    retention_days: Optional[int] = None
    realtime: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FieldCreate(BaseModel):
    """Schema for adding a field; give exactly one of source_path or formula."""
    slug: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    field_type: FieldType = FieldType.TEXT
    source_path: Optional[str] = Field(None, max_length=500, description="e.g. $.data.customer.email")
    formula: Optional[str] = Field(None, max_length=1000, description="e.g. price * quantity")
    is_visible: bool = True
    sort_order: int = 0


class FieldResponse(BaseModel):
    """Schema for field response."""
    id: str
    dataset_id: str
    slug: str
    name: str
    field_type: FieldType
    source_path: Optional[str] = None
    formula: Optional[str] = None
    is_visible: bool
    sort_order: int

    class Config:
        from_attributes = True


class RecordResponse(BaseModel):
    """Schema for record response."""
    id: str
    dataset_id: Optional[str] = None
    connection_id: str
    raw_payload: Any
    extracted_data: Dict[str, Any]
    payload_hash: str
    status: RecordStatus
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RecordListResponse(BaseModel):
    """Schema for record list response."""
    records: List[RecordResponse]
    total: int


class PurgeResponse(BaseModel):
    """Schema for purge result."""
    dataset_id: str
    deleted: int


class DeliveryLogResponse(BaseModel):
    """Schema for delivery log response."""
    id: str
    connection_id: str
    dataset_id: Optional[str] = None
    record_id: Optional[str] = None
    status: DeliveryStatus
    extracted_fields: int
    processing_time_ms: int
    payload_hash: Optional[str] = None
    error_message: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    ip_address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
