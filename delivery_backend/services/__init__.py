"""
Backend Services Module

Business logic for the Hub Delivery system. Services are stateless; the
async entry points take an order id and use the shared connection pool.

Services:
- send_detection: Newsletter send-burst detection over impression days
- delivery_summary: Order delivery reconciliation (goals vs entries)
- performance_entries: Entry validation, CTR derivation, row mapping

All services are designed to be consumed by the API layer (delivery_backend/api/)
and by the batch jobs (delivery_backend/jobs/).
"""

# =============================================================================
# Send Detection Exports
# Pure burst clustering of newsletter impression days into discrete sends
# =============================================================================

from delivery_backend.services.send_detection import (
    DEFAULT_GAP_DAYS,
    PlacementSendDates,
    count_send_bursts,
    count_newsletter_sends,
    to_day,
)

# =============================================================================
# Delivery Summary Exports
# Expected goals, channel dispatch, pixel health and persistence of the
# deliverySummary stored on each insertion order
# =============================================================================

from delivery_backend.services.delivery_summary import (
    CHANNEL_RULES,
    DEFAULT_CHANNEL_RULE,
    FAILED_VALIDATION_STATUSES,
    TRACKING_PIXEL_ITEM_NAME,
    build_delivery_summary,
    diagnose_pixel_health,
    get_channel_rule,
    refresh_delivery_summary,
    resolve_expected_goals,
    resync_delivery_summary,
    round_percent,
)

# =============================================================================
# Performance Entry Exports
# =============================================================================

from delivery_backend.services.performance_entries import (
    compute_ctr,
    record_to_entry,
    validate_performance_entry,
)

__all__ = [
    # Send detection
    'DEFAULT_GAP_DAYS',
    'PlacementSendDates',
    'count_send_bursts',
    'count_newsletter_sends',
    'to_day',
    # Delivery summary
    'CHANNEL_RULES',
    'DEFAULT_CHANNEL_RULE',
    'FAILED_VALIDATION_STATUSES',
    'TRACKING_PIXEL_ITEM_NAME',
    'build_delivery_summary',
    'diagnose_pixel_health',
    'get_channel_rule',
    'refresh_delivery_summary',
    'resolve_expected_goals',
    'resync_delivery_summary',
    'round_percent',
    # Performance entries
    'compute_ctr',
    'record_to_entry',
    'validate_performance_entry',
]
