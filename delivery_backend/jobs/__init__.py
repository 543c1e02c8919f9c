"""
Batch jobs for the Hub Delivery backend.

- resync_deliveries: recompute stored delivery summaries for all orders or
  for one campaign. Idempotent; safe to re-run at any time.

Usage:
    from delivery_backend.jobs import resync_all_delivery_summaries

    result = await resync_all_delivery_summaries(campaign_id="camp-2024-spring")
"""

from delivery_backend.jobs.resync_deliveries import (
    list_order_ids,
    resync_all_delivery_summaries,
)

__all__ = [
    'list_order_ids',
    'resync_all_delivery_summaries',
]
