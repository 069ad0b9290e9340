from __future__ import annotations

from typing import Mapping

from schemas.associations.enums import EntityType, require_exhaustive

ASSOCIATIONS_COLLECTION = "crm_associations"

ENTITY_COLLECTIONS: Mapping[EntityType, str] = {
    EntityType.COMPANY: "crm_companies",
    EntityType.LOCATION: "crm_locations",
    EntityType.CONTACT: "crm_contacts",
    EntityType.DEAL: "crm_deals",
    EntityType.SALESPERSON: "workforce",
    EntityType.DIVISION: "crm_divisions",
}

require_exhaustive(ENTITY_COLLECTIONS, "ENTITY_COLLECTIONS")


def collection_for(entity_type: EntityType) -> str:
    return ENTITY_COLLECTIONS[EntityType(entity_type)]
