"""
Shared API dependencies.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.database import get_db
from webhook_pipeline.core.exceptions import ValidationError
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.services.datasets import DatasetService


async def get_tenant_id(request: Request) -> str:
    """Owning tenant from the tenant header; every configuration route is scoped by it."""
    tenant_id: Optional[str] = request.headers.get(settings.TENANT_HEADER)
    if not tenant_id or not tenant_id.strip():
        raise ValidationError(f"Missing {settings.TENANT_HEADER} header")
    return tenant_id.strip()


async def get_tenant_dataset(
    dataset_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> Dataset:
    """Dataset from the path, 404 unless it belongs to the tenant."""
    return await DatasetService.get_dataset(db, tenant_id, dataset_id)
