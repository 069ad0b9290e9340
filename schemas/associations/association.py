from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.associations.enums import (
    AssociationKind,
    AssociationStrength,
    AssociationType,
    EntityType,
)

IMPLICIT_ID_PREFIX = "implicit_"

_KNOWN_TARGET_ID_PATTERN = re.compile(
    r"^implicit_(?P<source_id>.+)_(?P<target_type>"
    + "|".join(entity_type.value for entity_type in EntityType)
    + r")_(?P<target_id>[^_]+)$"
)
_ANY_TARGET_ID_PATTERN = re.compile(
    r"^implicit_(?P<source_id>[^_]+)_(?P<target_type>[^_]+)_(?P<target_id>.+)$"
)


class CamelModel(BaseModel):
    """Base model that reads and writes the camelCase document field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class AssociationMetadata(CamelModel):
    model_config = ConfigDict(extra="allow")

    start_date: Optional[str] = None
    end_date: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None


class _AssociationBase(CamelModel):
    id: str
    source_entity_type: EntityType
    source_entity_id: str
    target_entity_type: EntityType
    target_entity_id: str
    association_type: AssociationType = AssociationType.PRIMARY
    role: Optional[str] = None
    strength: AssociationStrength = AssociationStrength.MEDIUM
    metadata: Optional[AssociationMetadata] = None
    tenant_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @property
    def type_key(self) -> str:
        return f"{self.source_entity_type.value}→{self.target_entity_type.value}"

    def involves(self, entity_type: EntityType, entity_id: str) -> bool:
        return (
            self.source_entity_type == entity_type and self.source_entity_id == entity_id
        ) or (
            self.target_entity_type == entity_type and self.target_entity_id == entity_id
        )

    def counterpart(self, entity_type: EntityType, entity_id: str) -> tuple[EntityType, str]:
        """The side of this association that is not ``entity_type:entity_id``."""
        if self.source_entity_type == entity_type and self.source_entity_id == entity_id:
            return self.target_entity_type, self.target_entity_id
        return self.source_entity_type, self.source_entity_id


class ExplicitAssociation(_AssociationBase):
    """A persisted association record from the ``crm_associations`` collection."""

    kind: Literal[AssociationKind.EXPLICIT] = AssociationKind.EXPLICIT

    @property
    def ref(self) -> "ExplicitAssociationRef":
        return ExplicitAssociationRef(id=self.id)


class ImplicitAssociation(_AssociationBase):
    """An association synthesized from a foreign-key field on the source entity."""

    kind: Literal[AssociationKind.IMPLICIT] = AssociationKind.IMPLICIT
    source_field: str

    @property
    def ref(self) -> "ImplicitAssociationRef":
        return ImplicitAssociationRef(
            source_id=self.source_entity_id,
            target_type=self.target_entity_type.value,
            target_id=self.target_entity_id,
        )


Association = Annotated[
    Union[ExplicitAssociation, ImplicitAssociation],
    Field(discriminator="kind"),
]


class ExplicitAssociationRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[AssociationKind.EXPLICIT] = AssociationKind.EXPLICIT
    id: str


class ImplicitAssociationRef(BaseModel):
    """Handle to a derived association, resolved back to its source field on delete.

    ``target_type`` stays a plain string so that unknown kinds surface as an
    unsupported-type failure at delete time rather than a parse error.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal[AssociationKind.IMPLICIT] = AssociationKind.IMPLICIT
    source_id: str
    target_type: str
    target_id: str

    @property
    def id(self) -> str:
        return f"{IMPLICIT_ID_PREFIX}{self.source_id}_{self.target_type}_{self.target_id}"


AssociationRef = Union[ExplicitAssociationRef, ImplicitAssociationRef]


def implicit_association_id(source_id: str, target_type: EntityType, target_id: str) -> str:
    return f"{IMPLICIT_ID_PREFIX}{source_id}_{target_type.value}_{target_id}"


def parse_association_ref(association_id: str) -> AssociationRef:
    """Decode an opaque id received from a client into a typed reference.

    Only the HTTP boundary should need this; in-process callers hold the
    association objects and use their ``ref``.
    """
    match = _KNOWN_TARGET_ID_PATTERN.match(association_id) or _ANY_TARGET_ID_PATTERN.match(
        association_id
    )
    if match:
        return ImplicitAssociationRef(
            source_id=match.group("source_id"),
            target_type=match.group("target_type"),
            target_id=match.group("target_id"),
        )
    return ExplicitAssociationRef(id=association_id)
