"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from typing import Dict, Any

from webhook_pipeline.cache.redis_client import redis_client
from webhook_pipeline.core.database import get_db
from webhook_pipeline.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/detailed")
async def detailed_health_check(
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Detailed health check including database and cache connectivity.

    The cache is optional: an unreachable cache degrades, it does not fail.
    """
    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {
            "database": "unknown",
            "cache": "disabled",
        },
    }

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"

    if settings.CACHE_ENABLED:
        if await redis_client.ping():
            health_status["checks"]["cache"] = "healthy"
        else:
            health_status["checks"]["cache"] = "unavailable"
            if health_status["status"] == "healthy":
                health_status["status"] = "degraded"

    return health_status
