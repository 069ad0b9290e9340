from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from infrastructure.database.repositories.document_repository import (
    DocumentFilter,
    DocumentRepository,
)
from infrastructure.utils.timestamps import utc_now_iso
from schemas.associations.association import (
    AssociationMetadata,
    AssociationRef,
    ExplicitAssociation,
    ExplicitAssociationRef,
    ImplicitAssociationRef,
)
from schemas.associations.enums import AssociationStrength, AssociationType, EntityType
from schemas.requests.association import CreateAssociationRequest
from services.associations.collections import (
    ASSOCIATIONS_COLLECTION,
    ENTITY_COLLECTIONS,
    collection_for,
)
from services.associations.counters import AssociationCounterMaintainer, CounterAdjustment
from services.associations.errors import (
    AssociationNotFound,
    EntityNotFound,
    SourceEntityUnresolved,
    UnsupportedAssociationType,
)
from services.associations.implicit import ImplicitFieldMapping

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str, str, str, str]


@dataclass
class AssociationWriteResult:
    """Primary write outcome plus the advisory counter side effects it triggered."""

    association_id: str
    created: bool = False
    counter_updates: List[CounterAdjustment] = field(default_factory=list)

    @property
    def side_effects_ok(self) -> bool:
        return all(update.ok for update in self.counter_updates)


class PairLocks:
    """Per-process locks keyed by tenant and source/target pair."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[PairKey, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def hold(self, key: PairKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield


_default_pair_locks = PairLocks()


def explicit_from_document(document: Dict[str, Any]) -> Optional[ExplicitAssociation]:
    try:
        return ExplicitAssociation.model_validate(document)
    except ValidationError as exc:
        logger.warning("Skipping malformed association %s: %s", document.get("id"), exc)
        return None


class AssociationRecordStore:
    """CRUD over explicit association documents in ``crm_associations``.

    At most one record is kept per source/target pair: ``create`` updates the
    existing record instead of adding another. Deleting an implicit reference
    edits the foreign-key field it was derived from.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        counters: AssociationCounterMaintainer | None = None,
        mapping: ImplicitFieldMapping | None = None,
        pair_locks: PairLocks | None = None,
    ) -> None:
        self.repository = repository
        self.counters = counters or AssociationCounterMaintainer(repository)
        self.mapping = mapping or ImplicitFieldMapping()
        self._pair_locks = pair_locks or _default_pair_locks

    @property
    def user_id(self) -> str:
        return self.repository.context.user_id

    def _pair_key(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> PairKey:
        return (self.repository.tenant_id, source_type.value, source_id, target_type.value, target_id)

    async def _require_entity(self, entity_type: EntityType, entity_id: str) -> None:
        document = await self.repository.get_document(collection_for(entity_type), entity_id)
        if document is None:
            raise EntityNotFound(entity_type.value, entity_id)

    async def _adjust_pair(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
        delta: int,
    ) -> List[CounterAdjustment]:
        return [
            await self.counters.adjust_count(source_type, source_id, target_type, delta),
            await self.counters.adjust_count(target_type, target_id, source_type, delta),
        ]

    def _new_record(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
        association_type: AssociationType,
        role: Optional[str],
        strength: AssociationStrength,
        metadata: Optional[AssociationMetadata],
    ) -> Dict[str, Any]:
        now = utc_now_iso()
        data: Dict[str, Any] = {
            "sourceEntityType": source_type.value,
            "sourceEntityId": source_id,
            "targetEntityType": target_type.value,
            "targetEntityId": target_id,
            "associationType": association_type.value,
            "strength": strength.value,
            "tenantId": self.repository.tenant_id,
            "createdAt": now,
            "updatedAt": now,
            "createdBy": self.user_id,
            "updatedBy": self.user_id,
        }
        if role is not None:
            data["role"] = role
        if metadata is not None:
            data["metadata"] = metadata.to_document()
        return data

    async def create(
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
        await self._require_entity(source_type, source_id)
        await self._require_entity(target_type, target_id)

        async with self._pair_locks.hold(self._pair_key(source_type, source_id, target_type, target_id)):
            existing = await self.find(source_type, source_id, target_type, target_id)
            if existing is not None:
                updates: Dict[str, Any] = {
                    "associationType": association_type.value,
                    "strength": strength.value,
                    "updatedAt": utc_now_iso(),
                    "updatedBy": self.user_id,
                }
                if role is not None:
                    updates["role"] = role
                if metadata is not None:
                    updates["metadata"] = metadata.to_document()
                await self.repository.update_document(ASSOCIATIONS_COLLECTION, existing.id, updates)
                logger.info("Updated existing association %s", existing.id)
                return AssociationWriteResult(association_id=existing.id, created=False)

            association_id = await self.repository.add_document(
                ASSOCIATIONS_COLLECTION,
                self._new_record(
                    source_type,
                    source_id,
                    target_type,
                    target_id,
                    association_type,
                    role,
                    strength,
                    metadata,
                ),
            )

        counter_updates = await self._adjust_pair(source_type, source_id, target_type, target_id, 1)
        logger.info(
            "Created association %s: %s:%s -> %s:%s",
            association_id,
            source_type,
            source_id,
            target_type,
            target_id,
        )
        return AssociationWriteResult(
            association_id=association_id,
            created=True,
            counter_updates=counter_updates,
        )

    async def bulk_create(
        self,
        requests: Sequence[CreateAssociationRequest],
    ) -> List[AssociationWriteResult]:
        """Create many associations, reusing records that already exist.

        Every entity is validated before anything is written. Existing pairs are
        returned unchanged; counters move only for newly inserted pairs.
        """
        for request in requests:
            await self._require_entity(request.source_entity_type, request.source_entity_id)
            await self._require_entity(request.target_entity_type, request.target_entity_id)

        results: List[AssociationWriteResult] = []
        seen: Dict[PairKey, str] = {}
        inserted: List[Tuple[CreateAssociationRequest, AssociationWriteResult]] = []

        for request in requests:
            key = self._pair_key(
                request.source_entity_type,
                request.source_entity_id,
                request.target_entity_type,
                request.target_entity_id,
            )
            if key in seen:
                results.append(AssociationWriteResult(association_id=seen[key]))
                continue

            async with self._pair_locks.hold(key):
                existing = await self.find(
                    request.source_entity_type,
                    request.source_entity_id,
                    request.target_entity_type,
                    request.target_entity_id,
                )
                if existing is not None:
                    seen[key] = existing.id
                    results.append(AssociationWriteResult(association_id=existing.id))
                    continue

                association_id = await self.repository.add_document(
                    ASSOCIATIONS_COLLECTION,
                    self._new_record(
                        request.source_entity_type,
                        request.source_entity_id,
                        request.target_entity_type,
                        request.target_entity_id,
                        request.association_type,
                        request.role,
                        request.strength,
                        request.metadata,
                    ),
                )
            seen[key] = association_id
            result = AssociationWriteResult(association_id=association_id, created=True)
            inserted.append((request, result))
            results.append(result)

        for request, result in inserted:
            result.counter_updates = await self._adjust_pair(
                request.source_entity_type,
                request.source_entity_id,
                request.target_entity_type,
                request.target_entity_id,
                1,
            )

        logger.info("Bulk created %s of %s associations", len(inserted), len(requests))
        return results

    async def find(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> Optional[ExplicitAssociation]:
        """Exact pair lookup. When duplicates exist the oldest record is returned."""
        documents = await self.repository.list_documents(
            ASSOCIATIONS_COLLECTION,
            [
                DocumentFilter.eq("sourceEntityType", source_type.value),
                DocumentFilter.eq("sourceEntityId", source_id),
                DocumentFilter.eq("targetEntityType", target_type.value),
                DocumentFilter.eq("targetEntityId", target_id),
            ],
        )
        for document in documents:
            association = explicit_from_document(document)
            if association is not None:
                return association
        return None

    async def get(self, association_id: str) -> Optional[ExplicitAssociation]:
        document = await self.repository.get_document(ASSOCIATIONS_COLLECTION, association_id)
        return explicit_from_document(document) if document else None

    async def list_for_entity(
        self,
        entity_field: str,
        entity_type: EntityType,
        entity_id: str,
        filters: Sequence[DocumentFilter] = (),
        *,
        limit: Optional[int] = None,
    ) -> List[ExplicitAssociation]:
        """Associations where ``entity_field`` is ``"source"`` or ``"target"``."""
        documents = await self.repository.list_documents(
            ASSOCIATIONS_COLLECTION,
            [
                DocumentFilter.eq(f"{entity_field}EntityType", entity_type.value),
                DocumentFilter.eq(f"{entity_field}EntityId", entity_id),
                *filters,
            ],
            limit=limit,
        )
        associations = [explicit_from_document(document) for document in documents]
        return [association for association in associations if association is not None]

    async def update(
        self,
        association_id: str,
        *,
        association_type: Optional[AssociationType] = None,
        role: Optional[str] = None,
        strength: Optional[AssociationStrength] = None,
        metadata: Optional[AssociationMetadata] = None,
    ) -> None:
        updates: Dict[str, Any] = {
            "updatedAt": utc_now_iso(),
            "updatedBy": self.user_id,
        }
        if association_type is not None:
            updates["associationType"] = association_type.value
        if role is not None:
            updates["role"] = role
        if strength is not None:
            updates["strength"] = strength.value
        if metadata is not None:
            updates["metadata"] = metadata.to_document()

        updated = await self.repository.update_document(
            ASSOCIATIONS_COLLECTION, association_id, updates
        )
        if not updated:
            raise AssociationNotFound(association_id)
        logger.info("Updated association %s", association_id)

    async def delete(self, ref: AssociationRef) -> AssociationWriteResult:
        if isinstance(ref, ImplicitAssociationRef):
            return await self._delete_implicit(ref)
        return await self._delete_explicit(ref)

    async def _delete_explicit(self, ref: ExplicitAssociationRef) -> AssociationWriteResult:
        association = await self.get(ref.id)
        if association is None:
            raise AssociationNotFound(ref.id)

        await self.repository.delete_document(ASSOCIATIONS_COLLECTION, ref.id)
        counter_updates = await self._adjust_pair(
            association.source_entity_type,
            association.source_entity_id,
            association.target_entity_type,
            association.target_entity_id,
            -1,
        )
        logger.info("Deleted association %s", ref.id)
        return AssociationWriteResult(association_id=ref.id, counter_updates=counter_updates)

    async def _resolve_source(self, source_id: str) -> Tuple[EntityType, Dict[str, Any]]:
        for entity_type, collection in ENTITY_COLLECTIONS.items():
            document = await self.repository.get_document(collection, source_id)
            if document is not None:
                return entity_type, document
        raise SourceEntityUnresolved(source_id)

    async def _delete_implicit(self, ref: ImplicitAssociationRef) -> AssociationWriteResult:
        source_type, document = await self._resolve_source(ref.source_id)
        fk_field = self.mapping.field_for_delete(source_type, ref.target_type)
        if fk_field is None:
            raise UnsupportedAssociationType(source_type.value, ref.target_type)

        current = document.get(fk_field.field)
        if fk_field.is_array:
            values = current if isinstance(current, list) else []
            if ref.target_id not in values:
                raise AssociationNotFound(ref.id)
            new_value: Any = [value for value in values if value != ref.target_id]
        else:
            if current != ref.target_id:
                raise AssociationNotFound(ref.id)
            new_value = None

        await self.repository.update_document(
            collection_for(source_type),
            ref.source_id,
            {
                fk_field.field: new_value,
                "updatedAt": utc_now_iso(),
                "updatedBy": self.user_id,
            },
        )
        logger.info(
            "Removed %s:%s from %s.%s on %s",
            ref.target_type,
            ref.target_id,
            source_type,
            fk_field.field,
            ref.source_id,
        )
        return AssociationWriteResult(association_id=ref.id)
