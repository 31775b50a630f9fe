"""
Fixed-window rate limiter backed by the database.

Each (endpoint, identifier) pair owns one window row. Admission is decided by
a single conditional UPDATE, so concurrent requests can never push a window
past its limit.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.clock import utcnow, as_utc
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.models.database.rate_limits import RateLimitWindow

logger = get_logger(__name__)

MAX_ATTEMPTS = 3


@dataclass
class RateLimitResult:
    allowed: bool
    current_count: int
    reset_at: datetime


class RateLimiter:
    """Database fixed-window rate limiter."""

    @staticmethod
    async def check(
        db: AsyncSession,
        endpoint: str,
        identifier: str,
        max_requests: int,
        window_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RateLimitResult:
        """
        Count one request against a window and decide admission.

        Commits the session; callers must not have pending writes.

        Args:
            db: Database session
            endpoint: Logical endpoint name (e.g. "webhook-ingest")
            identifier: Caller identity within the endpoint
            max_requests: Requests admitted per window
            window_minutes: Window length (defaults to settings)
            now: Current time

        Returns:
            RateLimitResult with the post-request count and reset time
        """
        now = now or utcnow()
        window = timedelta(minutes=window_minutes or settings.RATE_LIMIT_WINDOW_MINUTES)

        if max_requests < 1:
            return RateLimitResult(allowed=False, current_count=0, reset_at=now + window)

        match = (RateLimitWindow.endpoint == endpoint, RateLimitWindow.identifier == identifier)

        for attempt in range(MAX_ATTEMPTS):
            # Increment inside a live window with room left
            row = (await db.execute(
                update(RateLimitWindow)
                .where(
                    *match,
                    RateLimitWindow.window_start > now - window,
                    RateLimitWindow.request_count < max_requests,
                )
                .values(request_count=RateLimitWindow.request_count + 1, updated_at=now)
                .returning(RateLimitWindow.window_start, RateLimitWindow.request_count)
                .execution_options(synchronize_session=False)
            )).first()
            if row is not None:
                await db.commit()
                return RateLimitResult(True, row.request_count, as_utc(row.window_start) + window)

            # Start a new window over an expired one
            row = (await db.execute(
                update(RateLimitWindow)
                .where(*match, RateLimitWindow.window_start <= now - window)
                .values(window_start=now, request_count=1, updated_at=now)
                .returning(RateLimitWindow.window_start, RateLimitWindow.request_count)
                .execution_options(synchronize_session=False)
            )).first()
            if row is not None:
                await db.commit()
                return RateLimitResult(True, 1, now + window)

            # Live window already full
            existing = (await db.execute(
                select(RateLimitWindow.window_start, RateLimitWindow.request_count).where(*match)
            )).first()
            if existing is not None:
                await db.commit()
                if as_utc(existing.window_start) > now - window and existing.request_count < max_requests:
                    # Window was reset concurrently between the two updates
                    continue
                return RateLimitResult(False, existing.request_count, as_utc(existing.window_start) + window)

            # First request for this pair
            db.add(RateLimitWindow(
                endpoint=endpoint,
                identifier=identifier,
                window_start=now,
                request_count=1,
                updated_at=now,
            ))
            try:
                await db.commit()
                return RateLimitResult(True, 1, now + window)
            except IntegrityError:
                # Another request created the row first; go around again
                await db.rollback()
                logger.debug(f"Rate limit window race for {endpoint}/{identifier}, attempt {attempt + 1}")

        logger.warning(f"Rate limit check for {endpoint}/{identifier} did not settle; denying")
        return RateLimitResult(False, max_requests, now + window)

    @staticmethod
    async def sweep(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Delete windows that ended long ago.

        Returns:
            Number of rows deleted
        """
        now = now or utcnow()
        horizon = timedelta(minutes=settings.RATE_LIMIT_WINDOW_MINUTES * settings.RATE_LIMIT_SWEEP_MULTIPLIER)
        result = await db.execute(
            delete(RateLimitWindow)
            .where(RateLimitWindow.window_start < now - horizon)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Swept {deleted} expired rate limit windows")
        return deleted
