"""
Request/response logging middleware.
"""
from typing import Callable
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
import time

from webhook_pipeline.core.logging import get_logger

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Log request and response.

        Only the path, connection id and client address are logged; headers
        and bodies may carry signing secrets and are left out.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response
        """
        start_time = time.time()

        request_log = {
            "method": request.method,
            "path": request.url.path,
            "connection_id": request.query_params.get("connection_id"),
            "client_host": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }

        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={"extra_fields": {"request": request_log}}
        )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000

        response_log = {
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }

        log_level = "error" if response.status_code >= 500 else "warning" if response.status_code >= 400 else "info"
        getattr(logger, log_level)(
            f"Response: {request.method} {request.url.path} - {response.status_code} ({duration_ms:.2f}ms)",
            extra={"extra_fields": {"response": response_log}}
        )

        return response
