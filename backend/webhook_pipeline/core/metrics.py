"""
Prometheus metrics collection and pipeline business metrics.
"""
from prometheus_client import Counter, Histogram, Gauge, Info
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from webhook_pipeline.core.config import settings

# Custom registry so tests can create several apps in one process
registry = CollectorRegistry()

# Application info
app_info = Info('app', 'Application information', registry=registry)
app_info.info({
    'name': settings.APP_NAME,
    'version': settings.APP_VERSION
})

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'Number of HTTP requests in progress',
    ['method', 'endpoint'],
    registry=registry
)

# Webhook Delivery Metrics
webhook_deliveries_total = Counter(
    'webhook_deliveries_total',
    'Total number of webhook deliveries by outcome',
    ['status'],
    registry=registry
)

webhook_processing_duration_seconds = Histogram(
    'webhook_processing_duration_seconds',
    'Time from request receipt to persisted record',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=registry
)

rate_limit_rejections_total = Counter(
    'rate_limit_rejections_total',
    'Total number of requests rejected by the rate limiter',
    ['endpoint'],
    registry=registry
)

# Follow-up Metrics
enrichment_actions_total = Counter(
    'enrichment_actions_total',
    'Total number of enrichment rule outcomes',
    ['action'],
    registry=registry
)

alert_dispatches_total = Counter(
    'alert_dispatches_total',
    'Total number of alert notification dispatches',
    ['notification_type', 'outcome'],
    registry=registry
)

calculated_field_cache_total = Counter(
    'calculated_field_cache_total',
    'Calculated field cache lookups',
    ['result'],
    registry=registry
)

# Maintenance Metrics
maintenance_rows_removed_total = Counter(
    'maintenance_rows_removed_total',
    'Rows removed or released by maintenance sweeps',
    ['job'],
    registry=registry
)

# Error Metrics
errors_total = Counter(
    'errors_total',
    'Total number of errors',
    ['error_type', 'endpoint'],
    registry=registry
)


def get_metrics():
    """
    Get current metrics in Prometheus format.

    Returns:
        Prometheus metrics in text format
    """
    return generate_latest(registry)


def get_metrics_content_type():
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST
