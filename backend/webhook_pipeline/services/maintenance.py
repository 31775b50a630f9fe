"""
Periodic maintenance: rate limit sweeps, retention purges and dedupe key release.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.metrics import maintenance_rows_removed_total
from webhook_pipeline.models.database.datasets import Dataset
from webhook_pipeline.models.database.records import DatasetRecord
from webhook_pipeline.services.calculated_fields import CalculatedFieldService
from webhook_pipeline.services.rate_limiter import RateLimiter

logger = get_logger(__name__)


class MaintenanceService:
    """Housekeeping jobs run on a schedule."""

    @staticmethod
    async def sweep_rate_limits(db: AsyncSession, now: Optional[datetime] = None) -> int:
        deleted = await RateLimiter.sweep(db, now)
        maintenance_rows_removed_total.labels(job="rate_limit_sweep").inc(deleted)
        return deleted

    @staticmethod
    async def purge_expired_records(db: AsyncSession, now: Optional[datetime] = None, cache=None) -> int:
        """
        Delete records older than their dataset's retention window.

        Works in batches of RETENTION_SWEEP_BATCH_SIZE per dataset.

        Returns:
            Number of records deleted
        """
        now = now or utcnow()
        result = await db.execute(
            select(Dataset.id, Dataset.retention_days).where(Dataset.retention_days.is_not(None))
        )
        datasets = result.all()

        total = 0
        for dataset_id, retention_days in datasets:
            cutoff = now - timedelta(days=retention_days)
            purged = 0
            while True:
                batch = select(DatasetRecord.id).where(
                    DatasetRecord.dataset_id == dataset_id,
                    DatasetRecord.created_at < cutoff,
                ).limit(settings.RETENTION_SWEEP_BATCH_SIZE)
                ids = list((await db.execute(batch)).scalars().all())
                if not ids:
                    break
                await db.execute(
                    delete(DatasetRecord)
                    .where(DatasetRecord.id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                purged += len(ids)

            if purged:
                logger.info(f"Purged {purged} records past {retention_days}d retention from dataset {dataset_id}")
                await CalculatedFieldService.invalidate_dataset(dataset_id, cache=cache)
            total += purged

        maintenance_rows_removed_total.labels(job="retention_purge").inc(total)
        return total

    @staticmethod
    async def release_dedupe_keys(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Clear dedupe keys of records that left the dedupe window.

        The window is DEDUPE_WINDOW_HOURS, shortened to the dataset's retention
        where that is smaller.

        Returns:
            Number of keys released
        """
        now = now or utcnow()
        default_cutoff = now - timedelta(hours=settings.DEDUPE_WINDOW_HOURS)

        # Datasets whose retention is shorter than the default dedupe window
        result = await db.execute(
            select(Dataset.id, Dataset.retention_days).where(
                Dataset.retention_days.is_not(None),
                Dataset.retention_days * 24 < settings.DEDUPE_WINDOW_HOURS,
            )
        )
        short_retention = result.all()

        conditions = [DatasetRecord.created_at < default_cutoff]
        for dataset_id, retention_days in short_retention:
            conditions.append(and_(
                DatasetRecord.dataset_id == dataset_id,
                DatasetRecord.created_at < now - timedelta(days=retention_days),
            ))

        result = await db.execute(
            update(DatasetRecord)
            .where(DatasetRecord.dedupe_key.is_not(None), or_(*conditions))
            .values(dedupe_key=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        released = result.rowcount or 0
        if released:
            logger.info(f"Released {released} expired dedupe keys")
        maintenance_rows_removed_total.labels(job="dedupe_release").inc(released)
        return released
