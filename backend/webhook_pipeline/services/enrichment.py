"""
Enrichment engine: joins record values onto target entities.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_pipeline.core.exceptions import DownstreamError, NotFoundError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.core.metrics import enrichment_actions_total
from webhook_pipeline.models.database.enrichments import DatasetEnrichment, EnrichedEntity

logger = get_logger(__name__)


@dataclass
class EnrichmentResult:
    enrichment_id: str
    target_entity: str
    action: str  # matched, updated, created, skipped, failed
    entity_id: Optional[str] = None
    reason: Optional[str] = None


def _key_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _mapped_attributes(field_mappings, data: Dict[str, Any]) -> Dict[str, Any]:
    attributes = {}
    for mapping in field_mappings or []:
        source = mapping.get("source_field")
        target = mapping.get("target_column")
        if source and target and source in data:
            attributes[target] = data[source]
    return attributes


class EnrichmentEngine:
    """Applies a dataset's enrichment rules to extracted record values."""

    @staticmethod
    async def create_rule(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: str,
        match_field: str,
        target_entity: str,
        target_field: str,
        field_mappings: List[Dict[str, str]],
        auto_create: bool = False,
    ) -> DatasetEnrichment:
        rule = DatasetEnrichment(
            tenant_id=tenant_id,
            dataset_id=dataset_id,
            match_field=match_field,
            target_entity=target_entity,
            target_field=target_field,
            field_mappings=field_mappings,
            auto_create=auto_create,
        )
        db.add(rule)
        await db.commit()
        await db.refresh(rule)
        logger.info(f"Created enrichment {rule.id}: {match_field} -> {target_entity}.{target_field}")
        return rule

    @staticmethod
    async def list_rules(db: AsyncSession, dataset_id: str) -> List[DatasetEnrichment]:
        result = await db.execute(
            select(DatasetEnrichment)
            .where(DatasetEnrichment.dataset_id == dataset_id)
            .order_by(DatasetEnrichment.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def deactivate_rule(db: AsyncSession, tenant_id: str, enrichment_id: str) -> DatasetEnrichment:
        result = await db.execute(
            select(DatasetEnrichment).where(
                DatasetEnrichment.id == enrichment_id,
                DatasetEnrichment.tenant_id == tenant_id,
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("Enrichment not found")
        rule.is_active = False
        await db.commit()
        await db.refresh(rule)
        return rule

    @staticmethod
    async def list_entities(
        db: AsyncSession,
        tenant_id: str,
        entity_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EnrichedEntity]:
        query = select(EnrichedEntity).where(EnrichedEntity.tenant_id == tenant_id)
        if entity_type:
            query = query.where(EnrichedEntity.entity_type == entity_type)
        result = await db.execute(
            query.order_by(EnrichedEntity.entity_type, EnrichedEntity.key_value).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def process(
        db: AsyncSession,
        tenant_id: str,
        dataset_id: str,
        extracted_data: Dict[str, Any],
    ) -> List[EnrichmentResult]:
        """
        Run every active rule of a dataset against one record's values.

        Each rule commits on its own; a failing rule is rolled back and
        reported without affecting the others. The record itself is never
        touched.

        Args:
            db: Database session
            tenant_id: Owning tenant
            dataset_id: Dataset the record belongs to
            extracted_data: Record's {slug: value} data

        Returns:
            One EnrichmentResult per rule
        """
        result = await db.execute(
            select(DatasetEnrichment).where(
                DatasetEnrichment.dataset_id == dataset_id,
                DatasetEnrichment.is_active.is_(True),
            )
        )
        # Plain snapshots: a rollback in one rule expires every loaded row
        rules = [_Rule.from_model(rule) for rule in result.scalars().all()]
        if not rules:
            return []

        results = []
        for rule in rules:
            try:
                outcome = await EnrichmentEngine._apply(db, tenant_id, rule, extracted_data)
                await db.commit()
            except Exception as e:
                await db.rollback()
                error = DownstreamError("enrichment", str(e))
                logger.error(f"Enrichment {rule.id} failed: {error}")
                outcome = EnrichmentResult(rule.id, rule.target_entity, "failed", reason=str(e))

            enrichment_actions_total.labels(action=outcome.action).inc()
            results.append(outcome)

        return results

    @staticmethod
    async def _find_entity(db: AsyncSession, tenant_id: str, rule: "_Rule", key_value: str) -> Optional[EnrichedEntity]:
        result = await db.execute(
            select(EnrichedEntity).where(
                EnrichedEntity.tenant_id == tenant_id,
                EnrichedEntity.entity_type == rule.target_entity,
                EnrichedEntity.key_field == rule.target_field,
                EnrichedEntity.key_value == key_value,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _apply(
        db: AsyncSession,
        tenant_id: str,
        rule: "_Rule",
        data: Dict[str, Any],
    ) -> EnrichmentResult:
        match_value = data.get(rule.match_field)
        if match_value is None or match_value == "":
            return EnrichmentResult(
                rule.id, rule.target_entity, "skipped",
                reason=f"Match field '{rule.match_field}' has no value",
            )

        key_value = _key_value(match_value)
        mapped = _mapped_attributes(rule.field_mappings, data)
        entity = await EnrichmentEngine._find_entity(db, tenant_id, rule, key_value)

        if entity is not None:
            if not mapped:
                return EnrichmentResult(rule.id, rule.target_entity, "matched", entity_id=entity.id)
            entity.attributes = {**(entity.attributes or {}), **mapped}
            return EnrichmentResult(rule.id, rule.target_entity, "updated", entity_id=entity.id)

        if not rule.auto_create:
            return EnrichmentResult(
                rule.id, rule.target_entity, "skipped",
                reason=f"No {rule.target_entity} with {rule.target_field}={key_value}",
            )

        entity = EnrichedEntity(
            tenant_id=tenant_id,
            entity_type=rule.target_entity,
            key_field=rule.target_field,
            key_value=key_value,
            attributes={rule.target_field: match_value, **mapped},
        )
        db.add(entity)
        try:
            await db.commit()
            return EnrichmentResult(rule.id, rule.target_entity, "created", entity_id=entity.id)
        except IntegrityError:
            # Created concurrently; fall back to updating the winner
            await db.rollback()

        entity = await EnrichmentEngine._find_entity(db, tenant_id, rule, key_value)
        if entity is None:
            raise DownstreamError("enrichment", f"{rule.target_entity} {key_value} vanished after insert conflict")
        if mapped:
            entity.attributes = {**(entity.attributes or {}), **mapped}
        logger.info(f"Enrichment {rule.id}: {rule.target_entity} {key_value} created concurrently, updated instead")
        return EnrichmentResult(rule.id, rule.target_entity, "updated", entity_id=entity.id)


@dataclass(frozen=True)
class _Rule:
    id: str
    match_field: str
    target_entity: str
    target_field: str
    field_mappings: tuple
    auto_create: bool

    @classmethod
    def from_model(cls, rule: DatasetEnrichment) -> "_Rule":
        return cls(
            id=rule.id,
            match_field=rule.match_field,
            target_entity=rule.target_entity,
            target_field=rule.target_field,
            field_mappings=tuple(rule.field_mappings or ()),
            auto_create=bool(rule.auto_create),
        )
