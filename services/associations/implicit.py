from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from infrastructure.database.repositories.document_repository import DocumentRepository
from schemas.associations.association import ImplicitAssociation, implicit_association_id
from schemas.associations.enums import AssociationStrength, AssociationType, EntityType
from services.associations.collections import collection_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForeignKeyField:
    """A field on ``source_type`` documents that references ``target_type`` ids."""

    source_type: EntityType
    field: str
    target_type: EntityType
    is_array: bool = False


@dataclass(frozen=True)
class FallbackField:
    field: str
    is_array: bool = False


DEFAULT_DERIVATIONS: Tuple[ForeignKeyField, ...] = (
    ForeignKeyField(EntityType.COMPANY, "salesOwnerId", EntityType.SALESPERSON),
    ForeignKeyField(EntityType.CONTACT, "companyId", EntityType.COMPANY),
    ForeignKeyField(EntityType.DEAL, "companyId", EntityType.COMPANY),
    ForeignKeyField(EntityType.SALESPERSON, "companyId", EntityType.COMPANY),
    ForeignKeyField(EntityType.DIVISION, "parentCompanyId", EntityType.COMPANY),
)

DEFAULT_DELETE_FALLBACKS: Mapping[EntityType, FallbackField] = {
    EntityType.COMPANY: FallbackField("companyId"),
    EntityType.CONTACT: FallbackField("contactIds", is_array=True),
    EntityType.LOCATION: FallbackField("locationId"),
    EntityType.SALESPERSON: FallbackField("salesOwnerId"),
    EntityType.DEAL: FallbackField("dealIds", is_array=True),
}


@dataclass(frozen=True)
class ImplicitFieldMapping:
    """Foreign-key table shared by derivation and implicit deletes.

    ``derivations`` drive what the deriver reports. ``delete_fallbacks`` are
    consulted by target type only when no derivation matches the
    ``(source kind, target type)`` pair being deleted.
    """

    derivations: Tuple[ForeignKeyField, ...] = DEFAULT_DERIVATIONS
    delete_fallbacks: Mapping[EntityType, FallbackField] = field(
        default_factory=lambda: dict(DEFAULT_DELETE_FALLBACKS)
    )

    def fields_for(self, source_type: EntityType) -> List[ForeignKeyField]:
        return [entry for entry in self.derivations if entry.source_type == source_type]

    def field_for_delete(
        self,
        source_type: EntityType,
        target_type: str,
    ) -> Optional[FallbackField]:
        try:
            target = EntityType(target_type)
        except ValueError:
            return None

        for entry in self.derivations:
            if entry.source_type == source_type and entry.target_type == target:
                return FallbackField(entry.field, entry.is_array)
        return self.delete_fallbacks.get(target)


def _as_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _referenced_ids(value: Any, is_array: bool) -> List[str]:
    if is_array:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item]
    return [str(value)] if value else []


class ImplicitAssociationDeriver:
    """Synthesizes associations from foreign-key fields on a source entity.

    Read-only. Output depends on the stored document and the bound scope only,
    so repeated calls over an unchanged document return equal results.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        mapping: ImplicitFieldMapping | None = None,
    ) -> None:
        self.repository = repository
        self.mapping = mapping or ImplicitFieldMapping()

    async def derive(self, entity_type: EntityType, entity_id: str) -> List[ImplicitAssociation]:
        fields = self.mapping.fields_for(entity_type)
        if not fields:
            return []

        document = await self.repository.get_document(collection_for(entity_type), entity_id)
        if document is None:
            logger.debug("No %s document %s to derive associations from", entity_type, entity_id)
            return []

        return self.derive_from_document(entity_type, entity_id, document)

    def derive_from_document(
        self,
        entity_type: EntityType,
        entity_id: str,
        document: Dict[str, Any],
    ) -> List[ImplicitAssociation]:
        created_at = _as_timestamp(document.get("createdAt"))
        updated_at = _as_timestamp(document.get("updatedAt")) or created_at
        user_id = self.repository.context.user_id

        associations: List[ImplicitAssociation] = []
        seen: set[str] = set()
        for entry in self.mapping.fields_for(entity_type):
            for target_id in _referenced_ids(document.get(entry.field), entry.is_array):
                association_id = implicit_association_id(entity_id, entry.target_type, target_id)
                if association_id in seen:
                    continue
                seen.add(association_id)
                associations.append(
                    ImplicitAssociation(
                        id=association_id,
                        source_entity_type=entity_type,
                        source_entity_id=entity_id,
                        target_entity_type=entry.target_type,
                        target_entity_id=target_id,
                        association_type=AssociationType.PRIMARY,
                        strength=AssociationStrength.MEDIUM,
                        tenant_id=self.repository.tenant_id,
                        created_at=created_at,
                        updated_at=updated_at,
                        created_by=user_id,
                        updated_by=user_id,
                        source_field=entry.field,
                    )
                )
        return associations
