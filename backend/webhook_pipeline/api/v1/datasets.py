"""
Dataset API endpoints: schema management and read-only record access.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.api.deps import get_tenant_id, get_tenant_dataset
from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.database.records import RecordStatus, DeliveryStatus
from webhook_pipeline.models.schemas.datasets import (
    DatasetCreate, DatasetResponse, FieldCreate, FieldResponse,
    RecordResponse, RecordListResponse, PurgeResponse, DeliveryLogResponse
)
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.services.datasets import DatasetService

router = APIRouter(prefix="/datasets", tags=["Datasets"])


@router.post("/", response_model=DatasetResponse, status_code=status.HTTP_201_CREATED)
async def create_dataset(
    payload: DatasetCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Create a dataset."""
    dataset = await DatasetService.create_dataset(
        db=db,
        tenant_id=tenant_id,
        name=payload.name,
        description=payload.description,
        retention_days=payload.retention_days,
        realtime=payload.realtime,
    )
    return DatasetResponse.model_validate(dataset)


@router.get("/", response_model=List[DatasetResponse])
async def list_datasets(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List datasets."""
    datasets = await DatasetService.list_datasets(db, tenant_id)
    return [DatasetResponse.model_validate(d) for d in datasets]


@router.get("/{dataset_id}", response_model=DatasetResponse)
async def get_dataset(dataset: Dataset = Depends(get_tenant_dataset)):
    """Get a dataset."""
    return DatasetResponse.model_validate(dataset)


@router.delete("/{dataset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_dataset(
    dataset_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Delete a dataset. Refused while records still reference it."""
    await DatasetService.delete_dataset(db, tenant_id, dataset_id)


@router.post("/{dataset_id}/fields", response_model=FieldResponse, status_code=status.HTTP_201_CREATED)
async def add_field(
    payload: FieldCreate,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Add a field to the dataset schema."""
    dataset_field = await DatasetService.add_field(
        db=db,
        dataset_id=dataset.id,
        slug=payload.slug,
        name=payload.name,
        field_type=payload.field_type,
        source_path=payload.source_path,
        formula=payload.formula,
        is_visible=payload.is_visible,
        sort_order=payload.sort_order,
    )
    return FieldResponse.model_validate(dataset_field)


@router.get("/{dataset_id}/fields", response_model=List[FieldResponse])
async def list_fields(
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """List the dataset schema."""
    fields = await DatasetService.list_fields(db, dataset.id)
    return [FieldResponse.model_validate(f) for f in fields]


@router.get("/{dataset_id}/records", response_model=RecordListResponse)
async def list_records(
    record_status: Optional[RecordStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """List records, newest first."""
    records = await DatasetService.list_records(db, dataset.id, status=record_status, limit=limit, offset=offset)
    return RecordListResponse(
        records=[RecordResponse.model_validate(r) for r in records],
        total=len(records)
    )


@router.get("/{dataset_id}/records/{record_id}", response_model=RecordResponse)
async def get_record(
    record_id: str,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Get one record."""
    record = await DatasetService.get_record(db, dataset.id, record_id)
    return RecordResponse.model_validate(record)


@router.post("/{dataset_id}/records/purge", response_model=PurgeResponse)
async def purge_records(
    before: Optional[datetime] = None,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Delete the dataset's records, optionally only those created before a time."""
    deleted = await DatasetService.purge_records(db, dataset.id, before=before)
    if deleted:
        await CalculatedFieldService.invalidate_dataset(dataset.id)
    return PurgeResponse(dataset_id=dataset.id, deleted=deleted)


@router.get("/{dataset_id}/logs", response_model=List[DeliveryLogResponse])
async def list_delivery_logs(
    log_status: Optional[DeliveryStatus] = Query(None, alias="status"),
    connection_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """List delivery logs of the dataset, newest first."""
    logs = await DatasetService.list_delivery_logs(
        db,
        dataset.tenant_id,
        dataset_id=dataset.id,
        connection_id=connection_id,
        status=log_status,
        limit=limit,
        offset=offset,
    )
    return [DeliveryLogResponse.model_validate(log) for log in logs]
