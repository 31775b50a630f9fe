"""
Connection API endpoints.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.api.deps import get_tenant_id
from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.schemas.connections import (
    ConnectionCreate, ConnectionUpdate, ConnectionResponse,
    ConnectionCreatedResponse, BackfillResponse
)
from webhook_pipeline.services.connections import ConnectionRegistry

router = APIRouter(prefix="/connections", tags=["Connections"])


@router.post("/", response_model=ConnectionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    payload: ConnectionCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Create a connection. The signing secret is returned only here."""
    connection = await ConnectionRegistry.create(
        db=db,
        tenant_id=tenant_id,
        name=payload.name,
        description=payload.description,
        dataset_id=payload.dataset_id,
        signature_scheme=payload.signature_scheme,
        signing_secret=payload.signing_secret,
        signature_header=payload.signature_header,
        rate_limit_per_minute=payload.rate_limit_per_minute,
    )
    return ConnectionCreatedResponse.model_validate(connection)


@router.get("/", response_model=List[ConnectionResponse])
async def list_connections(
    include_inactive: bool = True,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List connections."""
    connections = await ConnectionRegistry.list_for_tenant(db, tenant_id, include_inactive=include_inactive)
    return [ConnectionResponse.model_validate(c) for c in connections]


@router.get("/{connection_id}", response_model=ConnectionResponse)
async def get_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Get a connection."""
    connection = await ConnectionRegistry.get_for_tenant(db, tenant_id, connection_id)
    return ConnectionResponse.model_validate(connection)


@router.patch("/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: str,
    payload: ConnectionUpdate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Update a connection."""
    connection = await ConnectionRegistry.update(
        db, tenant_id, connection_id, payload.model_dump(exclude_unset=True)
    )
    return ConnectionResponse.model_validate(connection)


@router.delete("/{connection_id}", response_model=ConnectionResponse)
async def deactivate_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Deactivate a connection. Connections are never hard-deleted."""
    connection = await ConnectionRegistry.deactivate(db, tenant_id, connection_id)
    return ConnectionResponse.model_validate(connection)


@router.post("/{connection_id}/backfill", response_model=BackfillResponse)
async def backfill_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Move unassigned records of a connection into its dataset."""
    moved = await ConnectionRegistry.backfill(db, tenant_id, connection_id)
    connection = await ConnectionRegistry.get_for_tenant(db, tenant_id, connection_id)
    return BackfillResponse(
        connection_id=connection_id,
        dataset_id=connection.dataset_id,
        records_moved=moved,
    )
