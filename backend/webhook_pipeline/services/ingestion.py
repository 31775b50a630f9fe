"""
Webhook ingestion pipeline.

verify -> dedupe -> rate-limit -> extract -> persist -> audit-log. Follow-up
work (statistics, cache invalidation, enrichment, alerts) is handed back to
the caller to run after the response.
"""
import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.clock import utcnow, as_utc
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.database import get_db_session
from webhook_pipeline.core.exceptions import (
    AuthenticationError, PartialExtractionError, RateLimitedError, StorageTimeoutError, ValidationError
)
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.metrics import (
    webhook_deliveries_total, webhook_processing_duration_seconds, rate_limit_rejections_total
)
from webhook_pipeline.models.database.connections import Connection
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.database.records import DatasetRecord, DeliveryLog, RecordStatus, DeliveryStatus
from webhook_pipeline.services import signatures
from webhook_pipeline.services.connections import ConnectionRegistry
from webhook_pipeline.services.datasets import DatasetService
from webhook_pipeline.services.extraction import ExtractionResult, extract
from webhook_pipeline.services.rate_limiter import RateLimiter

logger = get_logger(__name__)

RATE_LIMIT_ENDPOINT = "webhook-ingest"

SENSITIVE_HEADERS = frozenset({
    "authorization",
    "cookie",
    "x-api-key",
    "x-webhook-secret",
    "x-webhook-token",
    *signatures.HMAC_HEADERS,
})

_RECORD_TO_DELIVERY_STATUS = {
    RecordStatus.PROCESSED: DeliveryStatus.SUCCESS,
    RecordStatus.PARTIAL: DeliveryStatus.PARTIAL,
    RecordStatus.UNASSIGNED: DeliveryStatus.UNASSIGNED,
}


@dataclass
class IngestRequest:
    connection_id: Optional[str]
    body: bytes
    headers: Mapping[str, str]
    client_ip: str = "unknown"


@dataclass
class IngestOutcome:
    record_id: str
    connection_id: str
    tenant_id: str
    dataset_id: Optional[str]
    status: DeliveryStatus
    extracted_fields: int = 0
    processing_time_ms: int = 0
    deduplicated: bool = False
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    received_at: Optional[datetime] = None

    @property
    def needs_followups(self) -> bool:
        return not self.deduplicated

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "record_id": self.record_id,
            "extracted_fields": self.extracted_fields,
            "processing_time_ms": self.processing_time_ms,
            "deduplicated": self.deduplicated,
        }

    def followup_payload(self) -> Dict[str, Any]:
        """JSON-safe arguments for the follow-up task."""
        return {
            "record_id": self.record_id,
            "connection_id": self.connection_id,
            "tenant_id": self.tenant_id,
            "dataset_id": self.dataset_id,
            "extracted_data": self.extracted_data,
            "received_at": self.received_at.isoformat() if self.received_at else None,
        }


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def payload_hash(payload: Any, connection_id: str) -> str:
    """SHA-256 over the canonical payload, scoped to the connection."""
    digest = hashlib.sha256()
    digest.update(connection_id.encode("utf-8"))
    digest.update(b":")
    digest.update(canonical_json(payload).encode("utf-8"))
    return digest.hexdigest()


def sanitize_headers(headers: Mapping[str, str], extra_sensitive: Optional[str] = None) -> Dict[str, str]:
    """Copy request headers with credentials and signatures redacted."""
    sensitive = set(SENSITIVE_HEADERS)
    if extra_sensitive:
        sensitive.add(extra_sensitive.lower())
    return {
        key: "[REDACTED]" if key.lower() in sensitive else value
        for key, value in headers.items()
    }


def client_ip_from(headers: Mapping[str, str], fallback: Optional[str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or headers.get("cf-connecting-ip") or fallback or "unknown"


def dedupe_window(dataset: Optional[Dataset]) -> timedelta:
    """Dedupe window, never longer than the dataset's retention."""
    window = timedelta(hours=settings.DEDUPE_WINDOW_HOURS)
    if dataset is not None and dataset.retention_days:
        window = min(window, timedelta(days=dataset.retention_days))
    return window


class IngestionPipeline:
    """Turns one inbound delivery into a stored record."""

    def __init__(self, session_factory: Callable = get_db_session):
        # Delivery logs are written in their own sessions so a failed
        # request transaction can never take its audit entry with it.
        self.session_factory = session_factory

    async def process(self, db: AsyncSession, request: IngestRequest, now: Optional[datetime] = None) -> IngestOutcome:
        """
        Run a delivery through the pipeline.

        Args:
            db: Database session for the request
            request: Raw delivery
            now: Receipt time

        Returns:
            IngestOutcome for the stored (or deduplicated) record

        Raises:
            ValidationError: Missing connection id or invalid JSON
            NotFoundError: Unknown or inactive connection
            AuthenticationError: Signature check failed
            RateLimitedError: Sender exceeded the connection's rate limit
            StorageTimeoutError: Record could not be stored in time
        """
        started = time.perf_counter()
        now = now or utcnow()

        if not request.connection_id:
            raise ValidationError("Missing connection_id parameter")

        connection = await ConnectionRegistry.get_active(db, request.connection_id)
        headers = sanitize_headers(request.headers, connection.signature_header)
        log_context = {
            "connection_id": connection.id,
            "tenant_id": connection.tenant_id,
            "dataset_id": connection.dataset_id,
            "headers": headers,
            "ip_address": request.client_ip,
        }

        # Verify
        header_value = signatures.select_signature_header(
            request.headers, connection.signature_scheme, connection.signature_header
        )
        verification = signatures.verify(
            request.body,
            connection.signature_scheme,
            connection.signing_secret,
            header_value,
            now=now.timestamp(),
        )
        if not verification.valid:
            logger.warning(f"Rejected delivery for connection {connection.id}: {verification.reason}")
            await self._log(DeliveryStatus.REJECTED_SIGNATURE, started, error=verification.reason, **log_context)
            raise AuthenticationError("Invalid signature", reason=verification.reason)

        # Parse
        try:
            payload = json.loads(request.body)
        except (ValueError, UnicodeDecodeError) as e:
            await self._log(DeliveryStatus.INVALID_PAYLOAD, started, error=f"Invalid JSON: {e}", **log_context)
            raise ValidationError("Invalid JSON payload")

        # Deduplicate
        digest = payload_hash(payload, connection.id)
        dataset = await db.get(Dataset, connection.dataset_id) if connection.dataset_id else None
        existing = await self._find_live_duplicate(db, connection.id, digest, now - dedupe_window(dataset))
        if existing is not None:
            return await self._duplicate(existing, connection, digest, started, log_context)

        # Rate limit
        rate = await RateLimiter.check(
            db,
            RATE_LIMIT_ENDPOINT,
            f"{request.client_ip}:{connection.id}",
            connection.rate_limit_per_minute or settings.DEFAULT_RATE_LIMIT_PER_MINUTE,
            now=now,
        )
        if not rate.allowed:
            rate_limit_rejections_total.labels(endpoint=RATE_LIMIT_ENDPOINT).inc()
            await self._log(
                DeliveryStatus.RATE_LIMITED, started, payload_hash=digest,
                error=f"Rate limit exceeded; resets at {rate.reset_at.isoformat()}", **log_context,
            )
            raise RateLimitedError(rate.reset_at, rate.current_count, connection.rate_limit_per_minute)

        # Extract
        if dataset is None:
            extraction = ExtractionResult()
            status = RecordStatus.UNASSIGNED
        else:
            extraction = extract(payload, await DatasetService.list_fields(db, dataset.id))
            status = RecordStatus.PARTIAL if extraction.is_partial else RecordStatus.PROCESSED
        diagnostics = PartialExtractionError(extraction.failures) if extraction.is_partial else None

        record = DatasetRecord(
            tenant_id=connection.tenant_id,
            dataset_id=dataset.id if dataset is not None else None,
            connection_id=connection.id,
            raw_payload=payload,
            extracted_data=extraction.data,
            payload_hash=digest,
            dedupe_key=digest,
            status=status,
            error_message=str(diagnostics) if diagnostics else None,
            created_at=now,
        )

        # Persist
        try:
            await asyncio.wait_for(self._persist(db, record), timeout=settings.STORAGE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            await self._discard(db)
            logger.error(f"Storing record for connection {connection.id} timed out")
            await self._log(
                DeliveryStatus.FAILED, started, payload_hash=digest,
                error="Storage timeout", **log_context,
            )
            raise StorageTimeoutError("Storage timeout, please retry")
        except IntegrityError:
            # A concurrent identical delivery won the dedupe key
            await db.rollback()
            winner = await self._find_live_duplicate(db, connection.id, digest, None)
            if winner is None:
                raise
            return await self._duplicate(winner, connection, digest, started, log_context)

        elapsed_ms = self._elapsed_ms(started)
        delivery_status = _RECORD_TO_DELIVERY_STATUS[status]
        await self._log(
            delivery_status, started,
            record_id=record.id,
            payload_hash=digest,
            extracted_fields=extraction.extracted_count,
            error=record.error_message,
            **log_context,
        )
        webhook_processing_duration_seconds.observe(elapsed_ms / 1000)

        logger.info(
            f"Stored record {record.id} for connection {connection.id} "
            f"({status.value}, {extraction.extracted_count} fields, {elapsed_ms}ms)"
        )

        return IngestOutcome(
            record_id=record.id,
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            dataset_id=record.dataset_id,
            status=delivery_status,
            extracted_fields=extraction.extracted_count,
            processing_time_ms=elapsed_ms,
            extracted_data=extraction.data,
            received_at=now,
        )

    @staticmethod
    async def _persist(db: AsyncSession, record: DatasetRecord) -> None:
        db.add(record)
        await db.commit()

    @staticmethod
    async def _discard(db: AsyncSession) -> None:
        try:
            await db.rollback()
        except Exception as e:
            logger.error(f"Rollback after storage timeout failed: {e}")

    @staticmethod
    async def _find_live_duplicate(
        db: AsyncSession,
        connection_id: str,
        digest: str,
        not_before: Optional[datetime],
    ) -> Optional[DatasetRecord]:
        """
        Record holding this dedupe key, if still inside the dedupe window.

        A key found outside the window is released so the payload can be
        stored again.
        """
        result = await db.execute(
            select(DatasetRecord).where(
                DatasetRecord.connection_id == connection_id,
                DatasetRecord.dedupe_key == digest,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None

        if not_before is not None and as_utc(record.created_at) < not_before:
            await db.execute(
                update(DatasetRecord)
                .where(DatasetRecord.id == record.id)
                .values(dedupe_key=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            logger.debug(f"Released expired dedupe key on record {record.id}")
            return None

        return record

    async def _duplicate(
        self,
        existing: DatasetRecord,
        connection: Connection,
        digest: str,
        started: float,
        log_context: Dict[str, Any],
    ) -> IngestOutcome:
        extracted = existing.extracted_data or {}
        await self._log(
            DeliveryStatus.DUPLICATE, started,
            record_id=existing.id,
            payload_hash=digest,
            **log_context,
        )
        logger.info(f"Duplicate delivery for connection {connection.id}, returning record {existing.id}")
        return IngestOutcome(
            record_id=existing.id,
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            dataset_id=existing.dataset_id,
            status=DeliveryStatus.DUPLICATE,
            extracted_fields=sum(1 for value in extracted.values() if value is not None),
            processing_time_ms=self._elapsed_ms(started),
            deduplicated=True,
            extracted_data=extracted,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    async def _log(
        self,
        status: DeliveryStatus,
        started: float,
        connection_id: str,
        tenant_id: str,
        dataset_id: Optional[str] = None,
        record_id: Optional[str] = None,
        payload_hash: Optional[str] = None,
        extracted_fields: int = 0,
        error: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Append a delivery log entry; failures are logged, never raised."""
        webhook_deliveries_total.labels(status=status.value).inc()
        try:
            async with self.session_factory() as session:
                session.add(DeliveryLog(
                    tenant_id=tenant_id,
                    connection_id=connection_id,
                    dataset_id=dataset_id,
                    record_id=record_id,
                    status=status,
                    extracted_fields=extracted_fields,
                    processing_time_ms=self._elapsed_ms(started),
                    payload_hash=payload_hash,
                    error_message=error,
                    headers=headers,
                    ip_address=ip_address,
                ))
        except Exception as e:
            logger.error(f"Failed to write delivery log ({status.value}) for connection {connection_id}: {e}")


# Global instance
ingestion_pipeline = IngestionPipeline()
