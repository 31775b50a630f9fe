"""
FastAPI application entry point with application factory pattern.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from webhook_pipeline.api.health import router as health_router
from webhook_pipeline.cache.redis_client import redis_client
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.database import engine, Base
from webhook_pipeline.core.exceptions import WebhookPipelineError
from webhook_pipeline.core.logging import setup_logging, get_logger
from webhook_pipeline.core.metrics import errors_total

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Create database tables (in production, use migrations)
    if settings.ENVIRONMENT == "local":
        import webhook_pipeline.models.database  # noqa: F401  registers the tables
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    yield

    # Shutdown
    logger.info("Shutting down application")
    await redis_client.close()


def create_app() -> FastAPI:
    """
    Application factory function.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Webhook ingestion and transformation pipeline API",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WebhookPipelineError)
    async def pipeline_exception_handler(request: Request, exc: WebhookPipelineError):
        if exc.status_code >= 500:
            errors_total.labels(error_type=type(exc).__name__, endpoint=request.url.path).inc()
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    # Error handling middleware
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        errors_total.labels(error_type=type(exc).__name__, endpoint=request.url.path).inc()
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=exc,
            extra={"extra_fields": {"path": request.url.path, "method": request.method}},
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
            "ingest": "/webhooks/ingest",
            "api_v1": settings.API_V1_PREFIX,
        }

    # Include routers
    app.include_router(health_router, tags=["Health"])

    # Metrics endpoint
    from webhook_pipeline.api.v1.metrics import router as metrics_router
    app.include_router(metrics_router)

    # Senders authenticate by signature, not tenant header, so ingestion sits at the root
    from webhook_pipeline.api.v1 import (
        webhooks_router, connections_router, datasets_router,
        calculated_fields_router, enrichments_router, alerts_router
    )
    app.include_router(webhooks_router)

    app.include_router(connections_router, prefix=settings.API_V1_PREFIX)
    app.include_router(datasets_router, prefix=settings.API_V1_PREFIX)
    app.include_router(calculated_fields_router, prefix=settings.API_V1_PREFIX)
    app.include_router(enrichments_router, prefix=settings.API_V1_PREFIX)
    app.include_router(alerts_router, prefix=settings.API_V1_PREFIX)

    # Middleware
    from webhook_pipeline.middleware.logging import LoggingMiddleware
    from webhook_pipeline.middleware.metrics import MetricsMiddleware

    # Add metrics middleware if enabled
    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)

    app.add_middleware(LoggingMiddleware)

    return app


# Create app instance
app = create_app()
