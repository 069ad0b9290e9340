from enum import StrEnum
from typing import Mapping


class EntityType(StrEnum):
    """Business entity kinds that can take part in an association."""

    COMPANY = "company"
    LOCATION = "location"
    CONTACT = "contact"
    DEAL = "deal"
    SALESPERSON = "salesperson"
    DIVISION = "division"


class AssociationType(StrEnum):
    """Semantic category of a link between two entities."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    REPORTING = "reporting"
    COLLABORATION = "collaboration"
    OWNERSHIP = "ownership"
    INFLUENCE = "influence"


class AssociationStrength(StrEnum):
    """Relationship confidence used for filtering and context weighting."""

    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class AssociationKind(StrEnum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class ContextDepth(StrEnum):
    SHALLOW = "shallow"
    MEDIUM = "medium"
    DEEP = "deep"


_IRREGULAR_PLURALS: Mapping[str, str] = {
    "salesperson": "salespeople",
    "person": "people",
    "company": "companies",
}


def pluralize(entity_type: str) -> str:
    """Plural bucket name for an entity type (``salesperson`` -> ``salespeople``)."""
    value = str(entity_type)
    return _IRREGULAR_PLURALS.get(value, f"{value}s")


def require_exhaustive(mapping: Mapping[EntityType, object], name: str) -> None:
    """Fail at import time when a per-entity table misses an :class:`EntityType`."""
    missing = [entity_type.value for entity_type in EntityType if entity_type not in mapping]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(missing)}")


ENTITY_BUCKETS = tuple(pluralize(entity_type) for entity_type in EntityType)
