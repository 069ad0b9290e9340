from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Set

from infrastructure.database.repositories.document_repository import (
    DocumentFilter,
    DocumentRepository,
)
from schemas.associations.association import Association
from schemas.associations.enums import EntityType, pluralize
from schemas.associations.result import (
    AssociationQuery,
    AssociationResult,
    AssociationSummary,
    empty_entity_buckets,
)
from services.associations.collections import collection_for
from services.associations.errors import QueryFailed
from services.associations.implicit import ImplicitAssociationDeriver
from services.associations.record_store import AssociationRecordStore

logger = logging.getLogger(__name__)


def _shared_filters(query: AssociationQuery) -> List[DocumentFilter]:
    filters: List[DocumentFilter] = []
    if query.association_types:
        filters.append(
            DocumentFilter.in_("associationType", [value.value for value in query.association_types])
        )
    if query.strength:
        filters.append(DocumentFilter.in_("strength", [value.value for value in query.strength]))
    return filters


def _matches(association: Association, query: AssociationQuery) -> bool:
    if query.target_types:
        counterpart_type, _ = association.counterpart(query.entity_type, query.entity_id)
        if counterpart_type not in query.target_types:
            return False
    if query.association_types and association.association_type not in query.association_types:
        return False
    if query.strength and association.strength not in query.strength:
        return False
    return True


class AssociationQueryEngine:
    """Combines explicit and implicit associations for one entity into a result.

    Explicit records are read from both directions so a link is visible from
    either end. Implicit associations cover the entity's own foreign keys.
    Referenced entities are resolved in one batched read per type.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        record_store: AssociationRecordStore,
        deriver: ImplicitAssociationDeriver,
    ) -> None:
        self.repository = repository
        self.record_store = record_store
        self.deriver = deriver

    async def query(self, query: AssociationQuery) -> AssociationResult:
        shared = _shared_filters(query)
        source_filters = list(shared)
        target_filters = list(shared)
        if query.target_types:
            types = [value.value for value in query.target_types]
            source_filters.append(DocumentFilter.in_("targetEntityType", types))
            # Stored role is reversed on the target side.
            target_filters.append(DocumentFilter.in_("sourceEntityType", types))

        outcomes = await asyncio.gather(
            self.record_store.list_for_entity(
                "source", query.entity_type, query.entity_id, source_filters, limit=query.limit
            ),
            self.record_store.list_for_entity(
                "target", query.entity_type, query.entity_id, target_filters, limit=query.limit
            ),
            self.deriver.derive(query.entity_type, query.entity_id),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error(
                    "Association query failed for %s:%s: %s",
                    query.entity_type,
                    query.entity_id,
                    outcome,
                )
                raise QueryFailed(query.entity_type.value, query.entity_id, outcome) from outcome
        as_source, as_target, implicit = outcomes

        logger.debug(
            "Found %s source, %s target and %s implicit associations for %s:%s",
            len(as_source),
            len(as_target),
            len(implicit),
            query.entity_type,
            query.entity_id,
        )

        associations: List[Association] = [*as_source, *as_target]
        associations.extend(association for association in implicit if _matches(association, query))

        if not query.include_metadata:
            associations = [
                association.model_copy(update={"metadata": None}) for association in associations
            ]

        entities = await self.load_entities(associations)
        return AssociationResult(
            associations=associations,
            entities=entities,
            summary=AssociationSummary.from_associations(associations),
        )

    async def load_entities(self, associations: List[Association]) -> Dict[str, List[Dict[str, Any]]]:
        wanted: Dict[EntityType, Set[str]] = {}
        for association in associations:
            wanted.setdefault(association.source_entity_type, set()).add(association.source_entity_id)
            wanted.setdefault(association.target_entity_type, set()).add(association.target_entity_id)

        entities = empty_entity_buckets()
        if not wanted:
            return entities

        entity_types = list(wanted)
        loaded = await asyncio.gather(
            *(self._load_bucket(entity_type, wanted[entity_type]) for entity_type in entity_types)
        )
        for entity_type, documents in zip(entity_types, loaded):
            entities[pluralize(entity_type)] = documents
        return entities

    async def _load_bucket(self, entity_type: EntityType, entity_ids: Set[str]) -> List[Dict[str, Any]]:
        try:
            found = await self.repository.get_documents_by_ids(
                collection_for(entity_type), sorted(entity_ids)
            )
        except Exception as exc:
            logger.warning("Failed to load %s entities: %s", entity_type, exc)
            return []

        missing = entity_ids.difference(found)
        if missing:
            logger.warning(
                "Skipping %s missing %s entities: %s",
                len(missing),
                entity_type,
                ", ".join(sorted(missing)),
            )
        return [found[entity_id] for entity_id in sorted(found)]
