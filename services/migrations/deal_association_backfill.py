from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import MIGRATION_BATCH_SIZE
from infrastructure.context import ContextScope
from infrastructure.database.repositories.document_repository import DocumentRepository
from infrastructure.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)

DEALS_COLLECTION = "crm_deals"

# associations.<key> on a deal -> (denormalized id array, owning collection)
ASSOCIATION_ID_FIELDS: Mapping[str, tuple[str, str]] = {
    "companies": ("companyIds", "crm_companies"),
    "contacts": ("contactIds", "crm_contacts"),
    "salespeople": ("salespersonIds", "workforce"),
    "locations": ("locationIds", "crm_locations"),
}


@dataclass
class BackfillReport:
    deals_scanned: int = 0
    deals_updated: int = 0
    reverse_index_updates: int = 0
    reverse_index_failures: int = 0
    errors: List[str] = field(default_factory=list)


def entry_id(entry: Any) -> Optional[str]:
    """Id of an association entry stored as a bare string or ``{id, snapshot?, isPrimary?}``."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict) and entry.get("id"):
        return str(entry["id"])
    return None


def _unique_ids(entries: Iterable[Any]) -> List[str]:
    ids: List[str] = []
    for entry in entries:
        value = entry_id(entry)
        if value and value not in ids:
            ids.append(value)
    return ids


def _entries(associations: Mapping[str, Any], key: str) -> List[Any]:
    value = associations.get(key)
    return value if isinstance(value, list) else []


def derive_deal_fields(deal: Mapping[str, Any]) -> Dict[str, Any]:
    """Recompute a deal's id arrays and ``primaryCompanyId`` from ``deal.associations``."""
    associations = deal.get("associations")
    if not isinstance(associations, dict):
        associations = {}

    fields: Dict[str, Any] = {}
    for key, (id_field, _) in ASSOCIATION_ID_FIELDS.items():
        fields[id_field] = _unique_ids(_entries(associations, key))

    companies = _entries(associations, "companies")
    primary = next(
        (entry_id(entry) for entry in companies if isinstance(entry, dict) and entry.get("isPrimary") and entry_id(entry)),
        None,
    )
    fields["primaryCompanyId"] = primary or (fields["companyIds"][0] if fields["companyIds"] else None)
    return fields


class DealAssociationBackfillJob:
    """Re-derives denormalized deal association fields and reverse indexes.

    Safe to re-run: unchanged deals are not written and a deal already present
    in an entity's ``associations.deals`` is not added again.
    """

    def __init__(
        self,
        db: AsyncSession,
        context: ContextScope,
        batch_size: int = MIGRATION_BATCH_SIZE,
        dry_run: bool = False,
        repository: DocumentRepository | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.db = db
        self.context = context
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.repository = repository or DocumentRepository(db, context)
        self._pending_writes = 0

    async def run(self, deal_id: Optional[str] = None) -> BackfillReport:
        report = BackfillReport()

        if deal_id:
            deal = await self.repository.get_document(DEALS_COLLECTION, deal_id)
            deals = [deal] if deal else []
            if not deals:
                logger.warning("Deal %s not found for tenant %s", deal_id, self.context.tenant_id)
        else:
            deals = [deal async for deal in self.repository.iter_collection(DEALS_COLLECTION)]

        logger.info("Found %s deal(s) for tenant %s", len(deals), self.context.tenant_id)
        for deal in deals:
            report.deals_scanned += 1
            await self._process_deal(deal, report)

        await self._flush(force=True)
        logger.info(
            "Backfill finished%s: scanned=%s updated=%s reverse_updates=%s reverse_failures=%s",
            " (dry run)" if self.dry_run else "",
            report.deals_scanned,
            report.deals_updated,
            report.reverse_index_updates,
            report.reverse_index_failures,
        )
        return report

    async def _process_deal(self, deal: Dict[str, Any], report: BackfillReport) -> None:
        deal_id = deal["id"]
        derived = derive_deal_fields(deal)
        changed = {key: value for key, value in derived.items() if deal.get(key) != value}

        if changed:
            report.deals_updated += 1
            if self.dry_run:
                logger.info("[dry-run] Would update deal %s: %s", deal_id, sorted(changed))
            else:
                await self.repository.update_document(
                    DEALS_COLLECTION, deal_id, {**changed, "updatedAt": utc_now_iso()}
                )
                await self._count_write()

        for id_field, collection in ASSOCIATION_ID_FIELDS.values():
            for entity_id in derived[id_field]:
                await self._add_reverse_index(collection, entity_id, deal_id, report)

    async def _add_reverse_index(
        self,
        collection: str,
        entity_id: str,
        deal_id: str,
        report: BackfillReport,
    ) -> None:
        entity = await self.repository.get_document(collection, entity_id)
        if entity is None:
            self._record_failure(report, collection, entity_id, deal_id, "entity not found")
            return

        associations = entity.get("associations")
        existing = associations.get("deals") if isinstance(associations, dict) else None
        existing = existing if isinstance(existing, list) else []
        if any(entry_id(entry) == deal_id for entry in existing):
            return

        if self.dry_run:
            logger.info("[dry-run] Would add deal %s to %s/%s", deal_id, collection, entity_id)
            report.reverse_index_updates += 1
            return

        try:
            # Rolls back only this write; the deal update and earlier writes stay pending.
            async with self.repository.savepoint():
                await self.repository.update_document(
                    collection,
                    entity_id,
                    {"associations.deals": [*existing, {"id": deal_id, "addedAt": utc_now_iso()}]},
                )
        except Exception as exc:
            self._record_failure(report, collection, entity_id, deal_id, str(exc))
            return

        report.reverse_index_updates += 1
        await self._count_write()

    @staticmethod
    def _record_failure(
        report: BackfillReport,
        collection: str,
        entity_id: str,
        deal_id: str,
        reason: str,
    ) -> None:
        report.reverse_index_failures += 1
        message = f"reverse index {collection}/{entity_id} for deal {deal_id}: {reason}"
        report.errors.append(message)
        logger.warning("Failed to update %s", message)

    async def _count_write(self) -> None:
        self._pending_writes += 1
        await self._flush()

    async def _flush(self, force: bool = False) -> None:
        if self.dry_run or self._pending_writes == 0:
            return
        if force or self._pending_writes >= self.batch_size:
            await self.db.commit()
            logger.info("Committed %s write(s)", self._pending_writes)
            self._pending_writes = 0
