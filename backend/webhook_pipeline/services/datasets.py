"""
Dataset, field schema and record read service.
"""
import re
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.exceptions import ConflictError, NotFoundError, ValidationError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.models.database.alerts import DatasetAlert, AlertEvent
from webhook_pipeline.models.database.calculated_fields import CalculatedField
from webhook_pipeline.models.database.connections import Connection
from webhook_pipeline.models.database.datasets import Dataset, DatasetField, FieldType
from webhook_pipeline.models.database.enrichments import DatasetEnrichment
from webhook_pipeline.models.database.records import DatasetRecord, DeliveryLog, RecordStatus, DeliveryStatus
from webhook_pipeline.services.formulas import parse_row_formula

logger = get_logger(__name__)

SLUG_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DatasetService:
    """Service for datasets and their field schemas."""

    @staticmethod
    async def create_dataset(
        db: AsyncSession,
        tenant_id: str,
        name: str,
        description: Optional[str] = None,
        retention_days: Optional[int] = None,
        realtime: bool = False,
    ) -> Dataset:
        dataset = Dataset(
            tenant_id=tenant_id,
            name=name,
            description=description,
            retention_days=retention_days,
            realtime=realtime,
        )
        db.add(dataset)
        await db.commit()
        await db.refresh(dataset)

        logger.info(f"Created dataset {dataset.id} ({name}) for tenant {tenant_id}")
        return dataset

    @staticmethod
    async def get_dataset(db: AsyncSession, tenant_id: str, dataset_id: str) -> Dataset:
        result = await db.execute(
            select(Dataset).where(Dataset.id == dataset_id, Dataset.tenant_id == tenant_id)
        )
        dataset = result.scalar_one_or_none()
        if dataset is None:
            raise NotFoundError("Dataset not found")
        return dataset

    @staticmethod
    async def list_datasets(db: AsyncSession, tenant_id: str) -> List[Dataset]:
        result = await db.execute(
            select(Dataset).where(Dataset.tenant_id == tenant_id).order_by(Dataset.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def delete_dataset(db: AsyncSession, tenant_id: str, dataset_id: str) -> None:
        """
        Delete a dataset with its fields, calculated fields, enrichments and alerts.

        Raises:
            ConflictError: Records still reference the dataset
        """
        dataset = await DatasetService.get_dataset(db, tenant_id, dataset_id)

        record_count = await db.scalar(
            select(func.count()).select_from(DatasetRecord).where(DatasetRecord.dataset_id == dataset_id)
        )
        if record_count:
            raise ConflictError(
                f"Dataset still has {record_count} records; purge or reassign them first"
            )

        alert_ids = select(DatasetAlert.id).where(DatasetAlert.dataset_id == dataset_id)
        await db.execute(delete(AlertEvent).where(AlertEvent.alert_id.in_(alert_ids)))
        await db.execute(delete(DatasetAlert).where(DatasetAlert.dataset_id == dataset_id))
        await db.execute(delete(DatasetEnrichment).where(DatasetEnrichment.dataset_id == dataset_id))
        await db.execute(delete(CalculatedField).where(CalculatedField.dataset_id == dataset_id))
        await db.execute(delete(DatasetField).where(DatasetField.dataset_id == dataset_id))
        await db.execute(
            update(Connection).where(Connection.dataset_id == dataset_id).values(dataset_id=None)
        )
        await db.delete(dataset)
        await db.commit()

        logger.info(f"Deleted dataset {dataset_id}")

    @staticmethod
    async def add_field(
        db: AsyncSession,
        dataset_id: str,
        slug: str,
        name: str,
        field_type: FieldType = FieldType.TEXT,
        source_path: Optional[str] = None,
        formula: Optional[str] = None,
        is_visible: bool = True,
        sort_order: int = 0,
    ) -> DatasetField:
        """
        Add a field to a dataset's schema.

        A field is either extracted (source_path) or computed (formula).

        Raises:
            ValidationError: Bad slug, both or neither of path/formula, bad formula
            ConflictError: Slug already used in the dataset
        """
        if not SLUG_PATTERN.match(slug):
            raise ValidationError(f"Invalid field slug '{slug}'")
        if bool(source_path) == bool(formula):
            raise ValidationError("A field needs exactly one of source_path or formula")
        if formula:
            parse_row_formula(formula)

        dataset_field = DatasetField(
            dataset_id=dataset_id,
            slug=slug,
            name=name,
            field_type=field_type,
            source_path=source_path,
            formula=formula,
            is_visible=is_visible,
            sort_order=sort_order,
        )
        db.add(dataset_field)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"Field '{slug}' already exists in this dataset")
        await db.refresh(dataset_field)
        return dataset_field

    @staticmethod
    async def list_fields(db: AsyncSession, dataset_id: str) -> List[DatasetField]:
        result = await db.execute(
            select(DatasetField)
            .where(DatasetField.dataset_id == dataset_id)
            .order_by(DatasetField.sort_order, DatasetField.slug)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_records(
        db: AsyncSession,
        dataset_id: str,
        status: Optional[RecordStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DatasetRecord]:
        query = select(DatasetRecord).where(DatasetRecord.dataset_id == dataset_id)
        if status:
            query = query.where(DatasetRecord.status == status)
        result = await db.execute(
            query.order_by(DatasetRecord.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_record(db: AsyncSession, dataset_id: str, record_id: str) -> DatasetRecord:
        result = await db.execute(
            select(DatasetRecord).where(
                DatasetRecord.id == record_id,
                DatasetRecord.dataset_id == dataset_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Record not found")
        return record

    @staticmethod
    async def purge_records(
        db: AsyncSession,
        dataset_id: str,
        before: Optional[datetime] = None,
    ) -> int:
        """
        Delete a dataset's records, optionally only those created before a time.

        Returns:
            Number of records deleted
        """
        query = delete(DatasetRecord).where(DatasetRecord.dataset_id == dataset_id)
        if before is not None:
            query = query.where(DatasetRecord.created_at < before)
        result = await db.execute(query.execution_options(synchronize_session=False))
        await db.commit()

        deleted = result.rowcount or 0
        logger.info(f"Purged {deleted} records from dataset {dataset_id}")
        return deleted

    @staticmethod
    async def list_delivery_logs(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        status: Optional[DeliveryStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeliveryLog]:
        query = select(DeliveryLog).where(DeliveryLog.tenant_id == tenant_id)
        if dataset_id:
            query = query.where(DeliveryLog.dataset_id == dataset_id)
        if connection_id:
            query = query.where(DeliveryLog.connection_id == connection_id)
        if status:
            query = query.where(DeliveryLog.status == status)
        result = await db.execute(
            query.order_by(DeliveryLog.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())
