from pydantic import Field, model_validator

from schemas.associations.association import AssociationMetadata, CamelModel
from schemas.associations.enums import AssociationStrength, AssociationType, EntityType


class CreateAssociationRequest(CamelModel):
    source_entity_type: EntityType
    source_entity_id: str = Field(..., min_length=1)
    target_entity_type: EntityType
    target_entity_id: str = Field(..., min_length=1)
    association_type: AssociationType = AssociationType.PRIMARY
    role: str | None = None
    strength: AssociationStrength = AssociationStrength.MEDIUM
    metadata: AssociationMetadata | None = None

    @model_validator(mode="after")
    def validate_payload(cls, values: "CreateAssociationRequest") -> "CreateAssociationRequest":
        if (
            values.source_entity_type == values.target_entity_type
            and values.source_entity_id == values.target_entity_id
        ):
            raise ValueError("An entity cannot be associated with itself")
        return values


class UpdateAssociationRequest(CamelModel):
    association_type: AssociationType | None = None
    role: str | None = None
    strength: AssociationStrength | None = None
    metadata: AssociationMetadata | None = None

    @model_validator(mode="after")
    def validate_payload(cls, values: "UpdateAssociationRequest") -> "UpdateAssociationRequest":
        if not values.model_fields_set:
            raise ValueError("At least one field must be provided")
        return values
