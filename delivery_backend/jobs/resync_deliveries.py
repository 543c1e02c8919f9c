"""
Delivery summary resync job.

Recomputes the stored deliverySummary of every non-deleted insertion order,
or of every order in one campaign. Run it after changing the reconciliation
rules or settings, or to repair summaries whose best-effort refresh failed.

The job is idempotent: each summary is rebuilt from scratch from the order's
goals and its current performance entries, so running it twice produces the
same result. One order failing never stops the run.

Usage:
    # From code
    result = await resync_all_delivery_summaries()
    result = await resync_all_delivery_summaries(campaign_id="camp-2024-spring")

    # From the command line
    python -m delivery_backend.jobs.resync_deliveries
    python -m delivery_backend.jobs.resync_deliveries --campaign camp-2024-spring
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Optional

from delivery_backend.core.database import close_db, get_db_pool, init_db
from delivery_backend.core.exceptions import (
    InventorySnapshotMissingError,
    OrderNotFoundError,
)
from delivery_backend.services.delivery_summary import resync_delivery_summary
from delivery_backend.sql.delivery_queries import get_active_order_ids_query


logger = logging.getLogger(__name__)


async def list_order_ids(campaign_id: Optional[str] = None) -> List[str]:
    """Ids of non-deleted orders, optionally restricted to one campaign."""
    sql, args = get_active_order_ids_query(campaign_id)
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(sql, *args)
    return [str(row["id"]) for row in rows]


async def resync_all_delivery_summaries(campaign_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Recompute delivery summaries for all matching orders.

    Orders without an inventory snapshot (or deleted mid-run) are skipped;
    any other error is recorded and the run continues.

    Returns:
        Dict with:
        - processed: orders attempted
        - updated: summaries written
        - skipped: orders with nothing to reconcile
        - failed: orders whose recompute raised
        - errors: list of {orderId, error} for failures
    """
    order_ids = await list_order_ids(campaign_id)
    scope = f"campaign {campaign_id}" if campaign_id else "all campaigns"
    logger.info(f"Resyncing delivery summaries for {len(order_ids)} orders ({scope})")

    updated = 0
    skipped = 0
    errors: List[Dict[str, str]] = []

    for order_id in order_ids:
        try:
            await resync_delivery_summary(order_id)
            updated += 1
        except (OrderNotFoundError, InventorySnapshotMissingError) as e:
            logger.info(f"Skipped order {order_id}: {e}")
            skipped += 1
        except Exception as e:
            logger.error(f"Failed to resync order {order_id}: {str(e)}", exc_info=True)
            errors.append({"orderId": order_id, "error": str(e)})

    result = {
        "processed": len(order_ids),
        "updated": updated,
        "skipped": skipped,
        "failed": len(errors),
        "errors": errors,
    }
    logger.info(
        f"Delivery summary resync complete: {updated} updated, {skipped} skipped, "
        f"{len(errors)} failed"
    )
    return result


async def _run(campaign_id: Optional[str]) -> Dict[str, Any]:
    await init_db()
    try:
        return await resync_all_delivery_summaries(campaign_id)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute insertion order delivery summaries.")
    parser.add_argument("--campaign", dest="campaign_id", help="Only resync orders of this campaign")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = asyncio.run(_run(args.campaign_id))
    return 1 if result["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
