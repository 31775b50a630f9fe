"""
Calculated field evaluation over stored records.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.cache.redis_client import redis_client
from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import ConflictError, NotFoundError, FormulaError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.metrics import calculated_field_cache_total
from webhook_pipeline.models.database.calculated_fields import (
    CalculatedField, FormulaType, TimeScope, ComparisonPeriod, RefreshMode
)
from webhook_pipeline.models.database.records import DatasetRecord, RecordStatus
from webhook_pipeline.services import formulas

logger = get_logger(__name__)

Window = Tuple[Optional[datetime], Optional[datetime]]

COUNTED_STATUSES = (RecordStatus.PROCESSED, RecordStatus.PARTIAL)


@dataclass
class CalculatedValue:
    slug: str
    current: Optional[float]
    previous: Optional[float] = None
    percent_change: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["window_start"] = self.window_start.isoformat() if self.window_start else None
        data["window_end"] = self.window_end.isoformat() if self.window_end else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalculatedValue":
        return cls(
            slug=data["slug"],
            current=data.get("current"),
            previous=data.get("previous"),
            percent_change=data.get("percent_change"),
            window_start=datetime.fromisoformat(data["window_start"]) if data.get("window_start") else None,
            window_end=datetime.fromisoformat(data["window_end"]) if data.get("window_end") else None,
            cached=True,
        )


def resolve_window(scope: TimeScope, now: datetime) -> Window:
    """
    Window [start, end) for a time scope, in UTC.

    daily starts at midnight, weekly on Monday, monthly on the 1st.
    all_time is unbounded.
    """
    scope = TimeScope(scope)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if scope == TimeScope.DAILY:
        return midnight, midnight + timedelta(days=1)
    if scope == TimeScope.WEEKLY:
        start = midnight - timedelta(days=midnight.weekday())
        return start, start + timedelta(days=7)
    if scope == TimeScope.MONTHLY:
        start = midnight.replace(day=1)
        return start, _add_months(start, 1)
    return None, None


def previous_window(scope: TimeScope, window: Window, period: ComparisonPeriod) -> Optional[Window]:
    """Comparison window for a current window; None when there is nothing to compare."""
    start, end = window
    if start is None or end is None:
        return None

    period = ComparisonPeriod(period)
    if period == ComparisonPeriod.PREVIOUS_YEAR:
        return _shift_year(start, -1), _shift_year(end, -1)

    if TimeScope(scope) == TimeScope.MONTHLY:
        return _add_months(start, -1), start
    length = end - start
    return start - length, start


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    return value.replace(year=year, month=month_index % 12 + 1, day=1)


def _shift_year(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a non-leap year
        return value.replace(year=value.year + years, day=28)


def percent_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None or previous == 0:
        return None
    return round((current - previous) / abs(previous) * 100, 4)


def cache_key(dataset_id: str, field_id: str, window: Window) -> str:
    start, end = window
    return (
        f"calc:{dataset_id}:{field_id}:"
        f"{start.isoformat() if start else 'all'}:{end.isoformat() if end else 'all'}"
    )


async def load_rows(db: AsyncSession, dataset_id: str, window: Window) -> List[Dict[str, Any]]:
    """Extracted values of counted records in a dataset window."""
    start, end = window
    query = select(DatasetRecord.extracted_data).where(
        DatasetRecord.dataset_id == dataset_id,
        DatasetRecord.status.in_(COUNTED_STATUSES),
    )
    if start is not None:
        query = query.where(DatasetRecord.created_at >= start)
    if end is not None:
        query = query.where(DatasetRecord.created_at < end)

    result = await db.execute(query)
    return [row or {} for row in result.scalars().all()]


class CalculatedFieldService:
    """Service for defining and evaluating calculated fields."""

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: str,
        slug: str,
        name: str,
        formula_type: FormulaType,
        formula: str,
        time_scope: TimeScope = TimeScope.ALL_TIME,
        comparison_period: Optional[ComparisonPeriod] = None,
        refresh_mode: RefreshMode = RefreshMode.LIVE,
        description: Optional[str] = None,
    ) -> CalculatedField:
        """
        Create a calculated field after validating its formula.

        Raises:
            FormulaError: Formula is invalid for its type
            ConflictError: Slug already used in the dataset
        """
        formulas.parse_formula(formula_type, formula)

        calculated_field = CalculatedField(
            tenant_id=tenant_id,
            dataset_id=dataset_id,
            slug=slug,
            name=name,
            description=description,
            formula_type=formula_type,
            formula=formula,
            time_scope=time_scope,
            comparison_period=comparison_period,
            refresh_mode=refresh_mode,
        )
        db.add(calculated_field)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"Calculated field '{slug}' already exists in this dataset")
        await db.refresh(calculated_field)

        logger.info(f"Created calculated field {slug} on dataset {dataset_id}")
        return calculated_field

    @staticmethod
    async def list_for_dataset(db: AsyncSession, dataset_id: str, active_only: bool = False) -> Sequence[CalculatedField]:
        query = select(CalculatedField).where(CalculatedField.dataset_id == dataset_id)
        if active_only:
            query = query.where(CalculatedField.is_active.is_(True))
        result = await db.execute(query.order_by(CalculatedField.slug))
        return result.scalars().all()

    @staticmethod
    async def get_by_slug(db: AsyncSession, dataset_id: str, slug: str) -> CalculatedField:
        result = await db.execute(
            select(CalculatedField).where(
                CalculatedField.dataset_id == dataset_id,
                CalculatedField.slug == slug,
            )
        )
        calculated_field = result.scalar_one_or_none()
        if calculated_field is None:
            raise NotFoundError(f"Calculated field '{slug}' not found")
        return calculated_field

    @staticmethod
    async def evaluate(
        db: AsyncSession,
        calculated_field: CalculatedField,
        now: Optional[datetime] = None,
        cache=None,
    ) -> CalculatedValue:
        """
        Evaluate a calculated field for its current window.

        Read-only. Cached fields are served from and stored to the cache.

        Args:
            db: Database session
            calculated_field: Field definition
            now: Evaluation time
            cache: Cache client (defaults to the Redis client)

        Returns:
            CalculatedValue with current, previous and percent change
        """
        now = now or utcnow()
        cache = cache if cache is not None else redis_client
        node = formulas.parse_formula(calculated_field.formula_type, calculated_field.formula)
        window = resolve_window(calculated_field.time_scope, now)

        use_cache = calculated_field.refresh_mode == RefreshMode.CACHED
        key = cache_key(calculated_field.dataset_id, calculated_field.id, window)

        if use_cache:
            hit = await cache.get(key)
            if hit:
                calculated_field_cache_total.labels(result="hit").inc()
                return CalculatedValue.from_dict(hit)
            calculated_field_cache_total.labels(result="miss").inc()

        current = formulas.evaluate(node, await load_rows(db, calculated_field.dataset_id, window))

        previous = None
        if calculated_field.comparison_period:
            comparison = previous_window(calculated_field.time_scope, window, calculated_field.comparison_period)
            if comparison is not None:
                previous = formulas.evaluate(node, await load_rows(db, calculated_field.dataset_id, comparison))

        value = CalculatedValue(
            slug=calculated_field.slug,
            current=current,
            previous=previous,
            percent_change=percent_change(current, previous),
            window_start=window[0],
            window_end=window[1],
        )

        if use_cache:
            await cache.set(key, value.to_dict(), ttl=settings.CALCULATED_FIELD_CACHE_TTL)
        return value

    @staticmethod
    async def evaluate_all(
        db: AsyncSession,
        dataset_id: str,
        now: Optional[datetime] = None,
        cache=None,
    ) -> List[CalculatedValue]:
        """Evaluate every active calculated field of a dataset."""
        values = []
        for calculated_field in await CalculatedFieldService.list_for_dataset(db, dataset_id, active_only=True):
            try:
                values.append(await CalculatedFieldService.evaluate(db, calculated_field, now=now, cache=cache))
            except FormulaError as e:
                logger.error(f"Stored formula for {calculated_field.slug} no longer parses: {e.message}")
        return values

    @staticmethod
    async def evaluate_raw_aggregate(
        db: AsyncSession,
        dataset_id: str,
        field: Optional[str],
        aggregation: str,
        time_window: TimeScope = TimeScope.ALL_TIME,
        filters: Optional[List[Dict[str, Any]]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """
        Evaluate an ad-hoc aggregate over a dataset window.

        Args:
            field: Record slug to aggregate (None only for count)
            aggregation: sum, count, avg, min or max
            time_window: Time scope of the window
            filters: [{"field", "operator", "value"}] predicates
        """
        function = aggregation.lower()
        if function not in formulas.AGGREGATE_FUNCTIONS:
            raise FormulaError(f"Unknown aggregation '{aggregation}'")
        if field is None and function != "count":
            raise FormulaError(f"{function.upper()} needs a field to aggregate")

        predicates = []
        for item in filters or []:
            operator = item.get("operator", "=")
            if operator not in formulas.COMPARISON_OPERATORS:
                raise FormulaError(f"Unknown operator '{operator}'")
            predicates.append(formulas.Predicate(item["field"], operator, item.get("value")))

        aggregate = formulas.Aggregate(function, field, tuple(predicates))
        window = resolve_window(time_window, now or utcnow())
        return formulas.evaluate_aggregate(aggregate, await load_rows(db, dataset_id, window))

    @staticmethod
    async def invalidate_dataset(dataset_id: str, cache=None) -> int:
        """Drop every cached result for a dataset."""
        cache = cache if cache is not None else redis_client
        return await cache.clear_pattern(f"calc:{dataset_id}:*")
