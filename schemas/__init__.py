from .associations import (
    AIContext,
    Association,
    AssociationQuery,
    AssociationResult,
    AssociationSummary,
    ExplicitAssociation,
    ImplicitAssociation,
)
from .requests.association import (
    CreateAssociationRequest,
    UpdateAssociationRequest,
)
from .responses.association import AssociationWriteResponse

__all__ = [
    "AIContext",
    "Association",
    "AssociationQuery",
    "AssociationResult",
    "AssociationSummary",
    "ExplicitAssociation",
    "ImplicitAssociation",
    "CreateAssociationRequest",
    "UpdateAssociationRequest",
    "AssociationWriteResponse",
]
