from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from schemas.associations.association import Association
from schemas.associations.enums import ContextDepth, EntityType, pluralize
from schemas.associations.result import (
    AIContext,
    AssociationQuery,
    AssociationResult,
    AssociationSummary,
    empty_entity_buckets,
)
from services.associations.errors import QueryFailed
from services.associations.query_engine import AssociationQueryEngine

logger = logging.getLogger(__name__)

EntityRef = Tuple[EntityType, str]


def build_context_summary(direct: AssociationResult, indirect: AssociationResult) -> str:
    def _type_pairs(result: AssociationResult) -> str:
        pairs: List[str] = []
        for association in result.associations:
            if association.type_key not in pairs:
                pairs.append(association.type_key)
        return ", ".join(pairs)

    return (
        f"Direct associations: {len(direct.associations)}\n"
        f"Indirect associations: {len(indirect.associations)}\n"
        f"Direct association types: {_type_pairs(direct)}\n"
        f"Indirect association types: {_type_pairs(indirect)}\n"
    )


class ContextExpansionService:
    """Assembles direct and second-hop associations for AI context."""

    def __init__(self, query_engine: AssociationQueryEngine) -> None:
        self.query_engine = query_engine

    async def get_ai_context(
        self,
        entity_type: EntityType,
        entity_id: str,
        depth: ContextDepth = ContextDepth.MEDIUM,
    ) -> AIContext:
        direct = await self.query_engine.query(
            AssociationQuery(entity_type=entity_type, entity_id=entity_id)
        )

        indirect = AssociationResult()
        if depth == ContextDepth.DEEP:
            indirect = await self._expand(entity_type, entity_id, direct)

        return AIContext(
            direct=direct,
            indirect=indirect,
            summary=build_context_summary(direct, indirect),
        )

    async def _expand(
        self,
        entity_type: EntityType,
        entity_id: str,
        direct: AssociationResult,
    ) -> AssociationResult:
        neighbours: List[EntityRef] = []
        for association in direct.associations:
            neighbour = association.counterpart(entity_type, entity_id)
            if neighbour != (entity_type, entity_id) and neighbour not in neighbours:
                neighbours.append(neighbour)

        results = await asyncio.gather(
            *(self._query_neighbour(neighbour_type, neighbour_id) for neighbour_type, neighbour_id in neighbours)
        )

        associations: List[Association] = []
        seen_associations: Set[str] = set()
        entities = empty_entity_buckets()
        seen_entities: Set[Tuple[str, str]] = set()

        for result in results:
            if result is None:
                continue
            for association in result.associations:
                if association.involves(entity_type, entity_id):
                    continue
                if association.id in seen_associations:
                    continue
                seen_associations.add(association.id)
                associations.append(association)

            for bucket, documents in result.entities.items():
                for document in documents:
                    key = (bucket, str(document.get("id")))
                    if key in seen_entities or self._is_origin(bucket, document, entity_type, entity_id):
                        continue
                    seen_entities.add(key)
                    entities.setdefault(bucket, []).append(document)

        logger.debug(
            "Expanded %s:%s through %s neighbours into %s indirect associations",
            entity_type,
            entity_id,
            len(neighbours),
            len(associations),
        )
        return AssociationResult(
            associations=associations,
            entities=entities,
            summary=AssociationSummary.from_associations(associations),
        )

    async def _query_neighbour(self, entity_type: EntityType, entity_id: str) -> Optional[AssociationResult]:
        try:
            return await self.query_engine.query(
                AssociationQuery(entity_type=entity_type, entity_id=entity_id)
            )
        except QueryFailed as exc:
            logger.warning("Skipping indirect context for %s:%s: %s", entity_type, entity_id, exc)
            return None

    @staticmethod
    def _is_origin(bucket: str, document: Dict[str, Any], entity_type: EntityType, entity_id: str) -> bool:
        return bucket == pluralize(entity_type) and document.get("id") == entity_id
