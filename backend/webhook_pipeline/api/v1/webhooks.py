"""
Webhook ingestion endpoint.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.database import get_db
from webhook_pipeline.models.schemas.webhooks import IngestResponse, ErrorResponse
from webhook_pipeline.services.followups import schedule_followups
from webhook_pipeline.services.ingestion import IngestRequest, client_ip_from, ingestion_pipeline

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/ingest",
    response_model=IngestResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def ingest_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    connection_id: Optional[str] = Query(None, description="Connection receiving the delivery"),
    db: AsyncSession = Depends(get_db),
):
    """
    Accept a webhook delivery.

    The body is read raw so signatures are checked over the exact bytes sent.
    """
    body = await request.body()
    ingest_request = IngestRequest(
        connection_id=connection_id,
        body=body,
        headers=request.headers,
        client_ip=client_ip_from(request.headers, request.client.host if request.client else None),
    )

    outcome = await ingestion_pipeline.process(db, ingest_request)
    schedule_followups(background_tasks, outcome)

    return outcome.to_response()
