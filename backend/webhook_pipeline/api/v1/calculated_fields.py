"""
Calculated field API endpoints.
"""
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.api.deps import get_tenant_dataset
from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.schemas.calculated_fields import (
    CalculatedFieldCreate, CalculatedFieldResponse, CalculatedValueResponse
)
from webhook_pipeline.services.calculated_fields import CalculatedFieldService

router = APIRouter(prefix="/datasets/{dataset_id}/calculated-fields", tags=["Calculated Fields"])


@router.post("/", response_model=CalculatedFieldResponse, status_code=status.HTTP_201_CREATED)
async def create_calculated_field(
    payload: CalculatedFieldCreate,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Create a calculated field. The formula is validated before it is stored."""
    calculated_field = await CalculatedFieldService.create(
        db=db,
        tenant_id=dataset.tenant_id,
        dataset_id=dataset.id,
        slug=payload.slug,
        name=payload.name,
        description=payload.description,
        formula_type=payload.formula_type,
        formula=payload.formula,
        time_scope=payload.time_scope,
        comparison_period=payload.comparison_period,
        refresh_mode=payload.refresh_mode,
    )
    return CalculatedFieldResponse.model_validate(calculated_field)


@router.get("/", response_model=List[CalculatedFieldResponse])
async def list_calculated_fields(
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """List calculated fields."""
    calculated_fields = await CalculatedFieldService.list_for_dataset(db, dataset.id)
    return [CalculatedFieldResponse.model_validate(cf) for cf in calculated_fields]


@router.get("/values", response_model=List[CalculatedValueResponse])
async def evaluate_all_calculated_fields(
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Evaluate every active calculated field of the dataset."""
    values = await CalculatedFieldService.evaluate_all(db, dataset.id)
    return [CalculatedValueResponse(**asdict(value)) for value in values]


@router.get("/{slug}/value", response_model=CalculatedValueResponse)
async def evaluate_calculated_field(
    slug: str,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Evaluate one calculated field for its current window."""
    calculated_field = await CalculatedFieldService.get_by_slug(db, dataset.id, slug)
    value = await CalculatedFieldService.evaluate(db, calculated_field)
    return CalculatedValueResponse(**asdict(value))
