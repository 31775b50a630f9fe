"""
Metrics collection middleware for Prometheus.
"""
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from webhook_pipeline.core.metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress
)


def normalize_path(path: str) -> str:
    """
    Normalize path to reduce label cardinality.

    /api/v1/datasets/<uuid>/records -> /api/v1/datasets/{id}/records
    """
    normalized_parts = []
    for part in path.split('/'):
        if part.isdigit():
            normalized_parts.append('{id}')
        elif len(part) == 36 and part.count('-') == 4:
            normalized_parts.append('{id}')
        else:
            normalized_parts.append(part)

    return '/'.join(normalized_parts)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = normalize_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()
