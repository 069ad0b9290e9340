from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from infrastructure.database.repositories.document_repository import DocumentRepository
from infrastructure.utils.timestamps import utc_now_iso
from schemas.associations.enums import EntityType, pluralize
from services.associations.collections import collection_for

logger = logging.getLogger(__name__)

CounterStatus = Literal["applied", "skipped", "failed"]

COUNTS_FIELD = "associationCounts"


@dataclass(frozen=True)
class CounterAdjustment:
    """Outcome of one advisory counter write."""

    entity_type: EntityType
    entity_id: str
    counter_key: str
    status: CounterStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


def counter_key(target_type: EntityType) -> str:
    return f"{COUNTS_FIELD}.{pluralize(target_type)}"


class AssociationCounterMaintainer:
    """Keeps ``associationCounts`` on entity documents roughly in step with explicit links.

    Counts are advisory and are never read back by the query path.
    """

    def __init__(self, repository: DocumentRepository) -> None:
        self.repository = repository

    async def adjust_count(
        self,
        entity_type: EntityType,
        entity_id: str,
        target_type: EntityType,
        delta: int,
    ) -> CounterAdjustment:
        key = counter_key(target_type)
        bucket = pluralize(target_type)
        collection = collection_for(entity_type)
        try:
            # A failed counter write must not roll back the association write.
            async with self.repository.savepoint():
                document = await self.repository.get_document(collection, entity_id)
                if document is None:
                    logger.warning(
                        "Skipping %s update, %s %s not found", key, entity_type, entity_id
                    )
                    return CounterAdjustment(entity_type, entity_id, key, "skipped")

                counts = document.get(COUNTS_FIELD) or {}
                current = counts.get(bucket, 0) if isinstance(counts, dict) else 0
                try:
                    current = int(current)
                except (TypeError, ValueError):
                    current = 0

                await self.repository.update_document(
                    collection,
                    entity_id,
                    {
                        key: max(0, current + delta),
                        "updatedAt": utc_now_iso(),
                    },
                )
        except Exception as exc:
            logger.error(
                "Failed to adjust %s on %s %s: %s", key, entity_type, entity_id, exc
            )
            return CounterAdjustment(entity_type, entity_id, key, "failed", str(exc))

        return CounterAdjustment(entity_type, entity_id, key, "applied")
