# API v1 package
from webhook_pipeline.api.v1.webhooks import router as webhooks_router
from webhook_pipeline.api.v1.connections import router as connections_router
from webhook_pipeline.api.v1.datasets import router as datasets_router
from webhook_pipeline.api.v1.calculated_fields import router as calculated_fields_router
from webhook_pipeline.api.v1.enrichments import router as enrichments_router
from webhook_pipeline.api.v1.alerts import router as alerts_router

__all__ = [
    "webhooks_router",
    "connections_router",
    "datasets_router",
    "calculated_fields_router",
    "enrichments_router",
    "alerts_router",
]
