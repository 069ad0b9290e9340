from __future__ import annotations


class AssociationError(Exception):
    """Base class for association failures surfaced to callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EntityNotFound(AssociationError):
    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} with ID {entity_id} does not exist")
        self.entity_type = entity_type
        self.entity_id = entity_id


class AssociationNotFound(AssociationError):
    def __init__(self, association_id: str) -> None:
        super().__init__(f"Association {association_id} not found")
        self.association_id = association_id


class UnsupportedAssociationType(AssociationError):
    def __init__(self, source_type: str, target_type: str) -> None:
        super().__init__(
            f"No foreign-key field maps {source_type} to target type '{target_type}'"
        )
        self.source_type = source_type
        self.target_type = target_type


class SourceEntityUnresolved(AssociationError):
    def __init__(self, source_id: str) -> None:
        super().__init__(
            f"Could not determine source entity type for implicit association source {source_id}"
        )
        self.source_id = source_id


class QueryFailed(AssociationError):
    def __init__(self, entity_type: str, entity_id: str, cause: BaseException) -> None:
        super().__init__(f"Failed to query associations for {entity_type}:{entity_id}: {cause}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.cause = cause
