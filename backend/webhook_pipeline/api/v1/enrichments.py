"""
Enrichment API endpoints.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.api.deps import get_tenant_id, get_tenant_dataset
from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.schemas.enrichments import (
    EnrichmentCreate, EnrichmentResponse, EnrichedEntityResponse
)
from webhook_pipeline.services.enrichment import EnrichmentEngine

router = APIRouter(tags=["Enrichments"])


@router.post(
    "/datasets/{dataset_id}/enrichments",
    response_model=EnrichmentResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_enrichment(
    payload: EnrichmentCreate,
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """Create an enrichment rule."""
    rule = await EnrichmentEngine.create_rule(
        db=db,
        tenant_id=dataset.tenant_id,
        dataset_id=dataset.id,
        match_field=payload.match_field,
        target_entity=payload.target_entity,
        target_field=payload.target_field,
        field_mappings=[mapping.model_dump() for mapping in payload.field_mappings],
        auto_create=payload.auto_create,
    )
    return EnrichmentResponse.model_validate(rule)


@router.get("/datasets/{dataset_id}/enrichments", response_model=List[EnrichmentResponse])
async def list_enrichments(
    dataset: Dataset = Depends(get_tenant_dataset),
    db: AsyncSession = Depends(get_db)
):
    """List enrichment rules of a dataset."""
    rules = await EnrichmentEngine.list_rules(db, dataset.id)
    return [EnrichmentResponse.model_validate(rule) for rule in rules]


@router.delete("/enrichments/{enrichment_id}", response_model=EnrichmentResponse)
async def deactivate_enrichment(
    enrichment_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Deactivate an enrichment rule."""
    rule = await EnrichmentEngine.deactivate_rule(db, tenant_id, enrichment_id)
    return EnrichmentResponse.model_validate(rule)


@router.get("/entities", response_model=List[EnrichedEntityResponse])
async def list_entities(
    entity_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List enriched entities."""
    entities = await EnrichmentEngine.list_entities(
        db, tenant_id, entity_type=entity_type, limit=limit, offset=offset
    )
    return [EnrichedEntityResponse.model_validate(entity) for entity in entities]
