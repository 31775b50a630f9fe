"""
Error taxonomy for the ingestion pipeline.

Every error that maps to an HTTP response derives from WebhookPipelineError
and carries its status code; the exception handler in main.py renders them
as {"error": message}.
"""
from datetime import datetime
from typing import Dict, List, Optional


class WebhookPipelineError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def headers(self) -> Dict[str, str]:
        return {}

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message}


class AuthenticationError(WebhookPipelineError):
    """Bad or missing signature. Never retried by the service."""

    status_code = 401

    def __init__(self, message: str = "Invalid signature", reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class NotFoundError(WebhookPipelineError):
    """Unknown or inactive entity."""

    status_code = 404


class ValidationError(WebhookPipelineError):
    """Malformed input or missing required parameter."""

    status_code = 400


class FormulaError(ValidationError):
    """Formula source failed to parse or is not valid for its formula type."""


class ConflictError(WebhookPipelineError):
    """Operation refused because other entities still reference the target."""

    status_code = 409


class RateLimitedError(WebhookPipelineError):
    """Too many requests; retry after reset_at."""

    status_code = 429
    retryable = True

    def __init__(self, reset_at: datetime, current_count: int = 0, limit: int = 0):
        super().__init__("Too many requests")
        self.reset_at = reset_at
        self.current_count = current_count
        self.limit = limit

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": self.reset_at.isoformat(),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message, "reset_at": self.reset_at.isoformat()}


class StorageTimeoutError(WebhookPipelineError):
    """Storage write exceeded its deadline; no record was kept."""

    status_code = 503
    retryable = True


class PartialExtractionError(Exception):
    """
    One or more field coercions failed.

    Not an HTTP error: the record is persisted with status "partial" and the
    failures listed in its error message.
    """

    def __init__(self, failures: List[str]):
        super().__init__("; ".join(failures))
        self.failures = failures


class DownstreamError(Exception):
    """Enrichment, alert or notification failure. Logged and isolated."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
