from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from schemas.associations.association import Association, CamelModel
from schemas.associations.enums import (
    ENTITY_BUCKETS,
    AssociationStrength,
    AssociationType,
    EntityType,
)


def empty_entity_buckets() -> Dict[str, List[Dict[str, Any]]]:
    return {bucket: [] for bucket in ENTITY_BUCKETS}


class AssociationQuery(CamelModel):
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    target_types: Optional[List[EntityType]] = None
    association_types: Optional[List[AssociationType]] = None
    strength: Optional[List[AssociationStrength]] = None
    include_metadata: bool = True
    limit: Optional[int] = Field(default=None, ge=1)

    def cache_suffix(self) -> str:
        def _join(values: Optional[List[Any]]) -> str:
            return ",".join(str(value) for value in values) if values else ""

        return ":".join(
            [
                _join(self.target_types),
                _join(self.association_types),
                _join(self.strength),
                "meta" if self.include_metadata else "nometa",
                str(self.limit or ""),
            ]
        )


class AssociationSummary(CamelModel):
    total_associations: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_strength: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_associations(cls, associations: List[Association]) -> "AssociationSummary":
        by_type: Dict[str, int] = {}
        by_strength: Dict[str, int] = {}
        for association in associations:
            type_key = association.type_key
            by_type[type_key] = by_type.get(type_key, 0) + 1
            strength_key = f"{type_key} ({association.strength.value})"
            by_strength[strength_key] = by_strength.get(strength_key, 0) + 1
        return cls(
            total_associations=len(associations),
            by_type=by_type,
            by_strength=by_strength,
        )


class AssociationResult(CamelModel):
    associations: List[Association] = Field(default_factory=list)
    entities: Dict[str, List[Dict[str, Any]]] = Field(default_factory=empty_entity_buckets)
    summary: AssociationSummary = Field(default_factory=AssociationSummary)

    def entity_ids(self, bucket: str) -> set[str]:
        return {entity["id"] for entity in self.entities.get(bucket, [])}


class AIContext(CamelModel):
    direct: AssociationResult
    indirect: AssociationResult = Field(default_factory=AssociationResult)
    summary: str = ""
