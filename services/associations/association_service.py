from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.cache import AssociationCache, association_cache_key, default_association_cache
from infrastructure.context import ContextScope
from infrastructure.database.database import call_after_commit
from infrastructure.database.repositories.document_repository import DocumentRepository
from schemas.associations.association import (
    AssociationMetadata,
    AssociationRef,
    ExplicitAssociation,
)
from schemas.associations.enums import (
    AssociationStrength,
    AssociationType,
    ContextDepth,
    EntityType,
)
from schemas.associations.result import AIContext, AssociationQuery, AssociationResult
from schemas.requests.association import CreateAssociationRequest
from services.associations.context_expansion import ContextExpansionService
from services.associations.counters import AssociationCounterMaintainer
from services.associations.implicit import ImplicitAssociationDeriver, ImplicitFieldMapping
from services.associations.query_engine import AssociationQueryEngine
from services.associations.record_store import AssociationRecordStore, AssociationWriteResult

logger = logging.getLogger(__name__)


class AssociationService:
    """Tenant-scoped entry point for association reads and writes.

    Query results are cached per tenant, entity and query parameters. Any
    mutation clears the cache immediately and again once the session commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        context: ContextScope,
        *,
        repository: DocumentRepository | None = None,
        cache: AssociationCache | None = None,
        field_mapping: ImplicitFieldMapping | None = None,
    ) -> None:
        self.context = context
        self.repository = repository or DocumentRepository(db, context)
        self.cache = cache if cache is not None else default_association_cache
        self.field_mapping = field_mapping or ImplicitFieldMapping()

        self.counters = AssociationCounterMaintainer(self.repository)
        self.record_store = AssociationRecordStore(
            self.repository,
            counters=self.counters,
            mapping=self.field_mapping,
        )
        self.deriver = ImplicitAssociationDeriver(self.repository, self.field_mapping)
        self.query_engine = AssociationQueryEngine(self.repository, self.record_store, self.deriver)
        self.context_expansion = ContextExpansionService(self.query_engine)

    async def _invalidate_cache(self) -> None:
        # Cleared again after commit: a concurrent reader may have cached pre-commit rows.
        await self.cache.clear()
        call_after_commit(self.repository.db, self.cache.clear)

    async def create_association(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
        association_type: AssociationType = AssociationType.PRIMARY,
        role: Optional[str] = None,
        strength: AssociationStrength = AssociationStrength.MEDIUM,
        metadata: Optional[AssociationMetadata] = None,
    ) -> AssociationWriteResult:
        result = await self.record_store.create(
            source_type,
            source_id,
            target_type,
            target_id,
            association_type=association_type,
            role=role,
            strength=strength,
            metadata=metadata,
        )
        await self._invalidate_cache()
        if not result.side_effects_ok:
            logger.warning("Association %s saved but counter updates failed", result.association_id)
        return result

    async def bulk_create_associations(
        self,
        requests: Sequence[CreateAssociationRequest],
    ) -> List[AssociationWriteResult]:
        results = await self.record_store.bulk_create(requests)
        await self._invalidate_cache()
        return results

    async def find_association(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> Optional[ExplicitAssociation]:
        return await self.record_store.find(source_type, source_id, target_type, target_id)

    async def update_association(
        self,
        association_id: str,
        *,
        association_type: Optional[AssociationType] = None,
        role: Optional[str] = None,
        strength: Optional[AssociationStrength] = None,
        metadata: Optional[AssociationMetadata] = None,
    ) -> None:
        await self.record_store.update(
            association_id,
            association_type=association_type,
            role=role,
            strength=strength,
            metadata=metadata,
        )
        await self._invalidate_cache()

    async def delete_association(self, ref: AssociationRef) -> AssociationWriteResult:
        result = await self.record_store.delete(ref)
        await self._invalidate_cache()
        return result

    async def query_associations(self, query: AssociationQuery) -> AssociationResult:
        key = association_cache_key(
            self.context.tenant_id,
            query.entity_type.value,
            query.entity_id,
            query.cache_suffix(),
        )
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Association cache hit for %s", key)
            return cached

        generation = self.cache.generation
        result = await self.query_engine.query(query)
        if self.cache.generation == generation:
            await self.cache.set(key, result)
        else:
            logger.debug("Not caching %s, invalidated during the query", key)
        return result

    async def get_ai_context(
        self,
        entity_type: EntityType,
        entity_id: str,
        depth: ContextDepth = ContextDepth.MEDIUM,
    ) -> AIContext:
        return await self.context_expansion.get_ai_context(entity_type, entity_id, depth)
