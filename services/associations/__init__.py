from .association_service import AssociationService
from .context_expansion import ContextExpansionService
from .counters import AssociationCounterMaintainer, CounterAdjustment
from .implicit import ImplicitAssociationDeriver, ImplicitFieldMapping
from .query_engine import AssociationQueryEngine
from .record_store import AssociationRecordStore, AssociationWriteResult

__all__ = [
    "AssociationService",
    "ContextExpansionService",
    "AssociationCounterMaintainer",
    "CounterAdjustment",
    "ImplicitAssociationDeriver",
    "ImplicitFieldMapping",
    "AssociationQueryEngine",
    "AssociationRecordStore",
    "AssociationWriteResult",
]
