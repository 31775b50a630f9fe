# Database models package
from webhook_pipeline.models.database.connections import Connection, SignatureScheme
from webhook_pipeline.models.database.datasets import Dataset, DatasetField, FieldType
from webhook_pipeline.models.database.records import DatasetRecord, DeliveryLog, RecordStatus, DeliveryStatus
from webhook_pipeline.models.database.calculated_fields import (
    CalculatedField,
    FormulaType,
    TimeScope,
    ComparisonPeriod,
    RefreshMode,
)
from webhook_pipeline.models.database.enrichments import DatasetEnrichment, EnrichedEntity
from webhook_pipeline.models.database.alerts import DatasetAlert, AlertEvent, NotificationType
from webhook_pipeline.models.database.rate_limits import RateLimitWindow

__all__ = [
    "Connection",
    "SignatureScheme",
    "Dataset",
    "DatasetField",
    "FieldType",
    "DatasetRecord",
    "DeliveryLog",
    "RecordStatus",
    "DeliveryStatus",
    "CalculatedField",
    "FormulaType",
    "TimeScope",
    "ComparisonPeriod",
    "RefreshMode",
    "DatasetEnrichment",
    "EnrichedEntity",
    "DatasetAlert",
    "AlertEvent",
    "NotificationType",
    "RateLimitWindow",
]
