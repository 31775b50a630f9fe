"""
Webhook ingestion response schemas.
"""
from pydantic import BaseModel


class IngestResponse(BaseModel):
    """Schema for an accepted (or deduplicated) delivery."""
    success: bool = True
    record_id: str
    extracted_fields: int
    processing_time_ms: int
    deduplicated: bool = False


class ErrorResponse(BaseModel):
    """Schema for error bodies."""
    error: str
