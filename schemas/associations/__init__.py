from .enums import (
    AssociationKind,
    AssociationStrength,
    AssociationType,
    ContextDepth,
    EntityType,
    pluralize,
)
from .association import (
    Association,
    AssociationMetadata,
    AssociationRef,
    ExplicitAssociation,
    ExplicitAssociationRef,
    ImplicitAssociation,
    ImplicitAssociationRef,
    implicit_association_id,
    parse_association_ref,
)
from .result import AIContext, AssociationQuery, AssociationResult, AssociationSummary

__all__ = [
    "AssociationKind",
    "AssociationStrength",
    "AssociationType",
    "ContextDepth",
    "EntityType",
    "pluralize",
    "Association",
    "AssociationMetadata",
    "AssociationRef",
    "ExplicitAssociation",
    "ExplicitAssociationRef",
    "ImplicitAssociation",
    "ImplicitAssociationRef",
    "implicit_association_id",
    "parse_association_ref",
    "AIContext",
    "AssociationQuery",
    "AssociationResult",
    "AssociationSummary",
]
