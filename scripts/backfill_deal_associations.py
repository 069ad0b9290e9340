from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import settings
from infrastructure.context import ContextScope
from infrastructure.database.database import SessionLocal
from services.migrations.deal_association_backfill import DealAssociationBackfillJob

logger = logging.getLogger(__name__)
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")


async def _backfill(
    tenant_id: str,
    *,
    deal_id: Optional[str],
    dry_run: bool,
    batch_size: int,
) -> int:
    async with SessionLocal() as session:
        scope = ContextScope(tenant_id=tenant_id, user_id=settings.DEFAULT_USER_ID)
        job = DealAssociationBackfillJob(session, scope, batch_size=batch_size, dry_run=dry_run)
        try:
            report = await job.run(deal_id=deal_id)
        except Exception:
            await session.rollback()
            logger.exception("Backfill aborted for tenant %s", tenant_id)
            return 1

    print(
        "Deals scanned: %s, updated: %s, reverse index updates: %s, failures: %s"
        % (
            report.deals_scanned,
            report.deals_updated,
            report.reverse_index_updates,
            report.reverse_index_failures,
        )
    )
    for error in report.errors:
        print("  - %s" % error)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Re-derive deal association id arrays and entity reverse indexes for a tenant."
    )
    parser.add_argument("--tenant", type=str, required=True, help="Tenant id to migrate")
    parser.add_argument("--deal", type=str, default=None, help="Only process this deal id")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing anything.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.MIGRATION_BATCH_SIZE,
        help="Number of document writes per commit.",
    )
    args = parser.parse_args()

    exit_code = asyncio.run(
        _backfill(
            args.tenant,
            deal_id=args.deal,
            dry_run=args.dry_run,
            batch_size=args.batch_size,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
