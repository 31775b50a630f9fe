# Schemas package
from webhook_pipeline.models.schemas.connections import (
    ConnectionCreate,
    ConnectionUpdate,
    ConnectionResponse,
    ConnectionCreatedResponse,
    BackfillResponse,
)
from webhook_pipeline.models.schemas.datasets import (
    DatasetCreate,
    DatasetResponse,
    FieldCreate,
    FieldResponse,
    RecordResponse,
    RecordListResponse,
    PurgeResponse,
    DeliveryLogResponse,
)
from webhook_pipeline.models.schemas.calculated_fields import (
    CalculatedFieldCreate,
    CalculatedFieldResponse,
    CalculatedValueResponse,
)
from webhook_pipeline.models.schemas.enrichments import (
    FieldMapping,
    EnrichmentCreate,
    EnrichmentResponse,
    EnrichedEntityResponse,
)
from webhook_pipeline.models.schemas.alerts import (
    AlertCreate,
    AlertResponse,
    AlertEventResponse,
    AlertEvaluationResponse,
    AlertEvaluationListResponse,
)
from webhook_pipeline.models.schemas.webhooks import IngestResponse, ErrorResponse

__all__ = [
    "ConnectionCreate",
    "ConnectionUpdate",
    "ConnectionResponse",
    "ConnectionCreatedResponse",
    "BackfillResponse",
    "DatasetCreate",
    "DatasetResponse",
    "FieldCreate",
    "FieldResponse",
    "RecordResponse",
    "RecordListResponse",
    "PurgeResponse",
    "DeliveryLogResponse",
    "CalculatedFieldCreate",
    "CalculatedFieldResponse",
    "CalculatedValueResponse",
    "FieldMapping",
    "EnrichmentCreate",
    "EnrichmentResponse",
    "EnrichedEntityResponse",
    "AlertCreate",
    "AlertResponse",
    "AlertEventResponse",
    "AlertEvaluationResponse",
    "AlertEvaluationListResponse",
    "IngestResponse",
    "ErrorResponse",
]
