"""
Connection schemas.
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from webhook_pipeline.models.database.connections import SignatureScheme


class ConnectionCreate(BaseModel):
    """Schema for creating a connection."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    dataset_id: Optional[str] = Field(None, description="Target dataset; omit to keep deliveries unassigned")
    signature_scheme: SignatureScheme = SignatureScheme.HMAC_SHA256
    signing_secret: Optional[str] = Field(None, min_length=6, max_length=255, description="Generated when omitted")
    signature_header: Optional[str] = Field(None, max_length=100, description="Custom signature header name")
    rate_limit_per_minute: Optional[int] = Field(None, ge=1, le=100000)


class ConnectionUpdate(BaseModel):
    """Schema for a partial connection update."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    dataset_id: Optional[str] = None
    signature_scheme: Optional[SignatureScheme] = None
    signing_secret: Optional[str] = Field(None, min_length=6, max_length=255)
    signature_header: Optional[str] = Field(None, max_length=100)
    rate_limit_per_minute: Optional[int] = Field(None, ge=1, le=100000)
    is_active: Optional[bool] = None


class ConnectionResponse(BaseModel):
    """Schema for connection response. The signing secret is never echoed."""
    id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    dataset_id: Optional[str] = None
    signature_scheme: SignatureScheme
    signature_header: Optional[str] = None
    rate_limit_per_minute: int
    is_active: bool
    last_used_at: Optional[datetime] = None
    delivery_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class ConnectionCreatedResponse(ConnectionResponse):
    """Creation response; the only time the signing secret is returned."""
    signing_secret: Optional[str] = None


class BackfillResponse(BaseModel):
    """Schema for backfill result."""
    connection_id: str
    dataset_id: str
    records_moved: int
