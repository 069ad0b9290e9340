from typing import List, Literal

from schemas.associations.association import CamelModel


class CounterUpdateResponse(CamelModel):
    entity_type: str
    entity_id: str
    counter_key: str
    status: Literal["applied", "skipped", "failed"]
    error: str | None = None


class AssociationWriteResponse(CamelModel):
    id: str
    created: bool
    counter_updates: List[CounterUpdateResponse] = []
