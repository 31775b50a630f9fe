"""
Connection registry: per-source webhook configuration.
"""
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import NotFoundError, ValidationError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.models.database.connections import Connection, SignatureScheme
from webhook_pipeline.models.database.records import DatasetRecord, RecordStatus
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.services.datasets import DatasetService
from webhook_pipeline.services.extraction import extract

logger = get_logger(__name__)

UPDATABLE_FIELDS = (
    "name",
    "description",
    "dataset_id",
    "signature_scheme",
    "signing_secret",
    "signature_header",
    "rate_limit_per_minute",
    "is_active",
)


def generate_secret() -> str:
    return secrets.token_hex(32)


class ConnectionRegistry:
    """Lookup and management of webhook connections."""

    @staticmethod
    async def get_active(db: AsyncSession, connection_id: str) -> Connection:
        """
        Fetch an active connection by id.

        Raises:
            NotFoundError: Connection is missing or deactivated
        """
        result = await db.execute(select(Connection).where(Connection.id == connection_id))
        connection = result.scalar_one_or_none()
        if connection is None or not connection.is_active:
            raise NotFoundError("Connection not found or inactive")
        return connection

    @staticmethod
    async def get_for_tenant(db: AsyncSession, tenant_id: str, connection_id: str) -> Connection:
        result = await db.execute(
            select(Connection).where(Connection.id == connection_id, Connection.tenant_id == tenant_id)
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            raise NotFoundError("Connection not found")
        return connection

    @staticmethod
    async def list_for_tenant(db: AsyncSession, tenant_id: str, include_inactive: bool = True) -> List[Connection]:
        query = select(Connection).where(Connection.tenant_id == tenant_id)
        if not include_inactive:
            query = query.where(Connection.is_active.is_(True))
        result = await db.execute(query.order_by(Connection.created_at))
        return list(result.scalars().all())

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_id: str,
        name: str,
        dataset_id: Optional[str] = None,
        signature_scheme: SignatureScheme = SignatureScheme.HMAC_SHA256,
        signing_secret: Optional[str] = None,
        signature_header: Optional[str] = None,
        rate_limit_per_minute: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Connection:
        """
        Create a connection.

        A signing secret is generated when the scheme needs one and none is given.

        Args:
            db: Database session
            tenant_id: Owning tenant
            name: Display name
            dataset_id: Target dataset (None leaves deliveries unassigned)
            signature_scheme: hmac-sha256, shared-secret or none
            signing_secret: Secret shared with the sender
            signature_header: Custom signature header name
            rate_limit_per_minute: Requests admitted per minute per sender
            description: Description

        Returns:
            Created connection
        """
        if dataset_id:
            await DatasetService.get_dataset(db, tenant_id, dataset_id)

        scheme = SignatureScheme(signature_scheme)
        if scheme != SignatureScheme.NONE and not signing_secret:
            signing_secret = generate_secret()

        limit = rate_limit_per_minute if rate_limit_per_minute is not None else settings.DEFAULT_RATE_LIMIT_PER_MINUTE
        if limit < 1:
            raise ValidationError("rate_limit_per_minute must be at least 1")

        connection = Connection(
            tenant_id=tenant_id,
            name=name,
            description=description,
            dataset_id=dataset_id,
            signature_scheme=scheme,
            signing_secret=signing_secret,
            signature_header=signature_header,
            rate_limit_per_minute=limit,
        )
        db.add(connection)
        await db.commit()
        await db.refresh(connection)

        logger.info(f"Created connection {connection.id} ({name}) for tenant {tenant_id}")
        return connection

    @staticmethod
    async def update(
        db: AsyncSession,
        tenant_id: str,
        connection_id: str,
        changes: Dict[str, Any],
    ) -> Connection:
        """Apply a partial update to a connection."""
        connection = await ConnectionRegistry.get_for_tenant(db, tenant_id, connection_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update: {', '.join(sorted(unknown))}")

        if changes.get("dataset_id"):
            await DatasetService.get_dataset(db, tenant_id, changes["dataset_id"])
        if "rate_limit_per_minute" in changes and (changes["rate_limit_per_minute"] or 0) < 1:
            raise ValidationError("rate_limit_per_minute must be at least 1")
        if "signature_scheme" in changes:
            changes["signature_scheme"] = SignatureScheme(changes["signature_scheme"])
            if changes["signature_scheme"] != SignatureScheme.NONE and not (
                changes.get("signing_secret") or connection.signing_secret
            ):
                changes["signing_secret"] = generate_secret()

        for key, value in changes.items():
            setattr(connection, key, value)

        await db.commit()
        await db.refresh(connection)
        return connection

    @staticmethod
    async def deactivate(db: AsyncSession, tenant_id: str, connection_id: str) -> Connection:
        """Soft-deactivate a connection; its records and logs are kept."""
        connection = await ConnectionRegistry.get_for_tenant(db, tenant_id, connection_id)
        connection.is_active = False
        await db.commit()
        await db.refresh(connection)

        logger.info(f"Deactivated connection {connection_id}")
        return connection

    @staticmethod
    async def record_delivery(db: AsyncSession, connection_id: str, at: Optional[datetime] = None) -> None:
        """Bump delivery statistics in a single atomic statement."""
        await db.execute(
            update(Connection)
            .where(Connection.id == connection_id)
            .values(
                delivery_count=Connection.delivery_count + 1,
                last_used_at=at or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def backfill(db: AsyncSession, tenant_id: str, connection_id: str, cache=None) -> int:
        """
        Move a connection's unassigned records into its current dataset.

        Extraction is re-run over the retained payloads and the dataset's
        cached calculated fields are dropped.

        Returns:
            Number of records moved
        """
        connection = await ConnectionRegistry.get_for_tenant(db, tenant_id, connection_id)
        if not connection.dataset_id:
            raise ValidationError("Connection has no dataset to backfill into")

        dataset_id = connection.dataset_id
        fields = await DatasetService.list_fields(db, dataset_id)
        result = await db.execute(
            select(DatasetRecord).where(
                DatasetRecord.connection_id == connection_id,
                DatasetRecord.status == RecordStatus.UNASSIGNED,
            )
        )
        records = list(result.scalars().all())

        for record in records:
            extraction = extract(record.raw_payload, fields)
            record.dataset_id = dataset_id
            record.extracted_data = extraction.data
            record.status = RecordStatus.PARTIAL if extraction.is_partial else RecordStatus.PROCESSED
            record.error_message = "; ".join(extraction.failures) or None

        await db.commit()

        if records:
            await CalculatedFieldService.invalidate_dataset(dataset_id, cache=cache)
            logger.info(f"Backfilled {len(records)} records from connection {connection_id} into dataset {dataset_id}")
        return len(records)
