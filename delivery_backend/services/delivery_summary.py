"""
Delivery Reconciliation Service.

This module recomputes the `deliverySummary` stored on a publication insertion
order from the order's own goals and every current performance entry for it.
It runs after each performance entry write (create, update, soft delete,
bulk import) and always rebuilds the summary from scratch; there are no
incremental counters to drift out of sync.

Pipeline:
    1. Expected goals: walk the order's selected inventory snapshot (not the
       campaign's, which may have diverged), skip excluded items, and sum
       placement counts and goal values per channel.
    2. Channel totals: drop entries with a failed validation status, group by
       channel and sum the volume metrics. reportCount only counts entries
       that are manual/imported or automated with a real creative name; bare
       tracking-pixel fires still add impressions.
    3. Newsletter sends: group valid newsletter entries by (itemPath, day) and
       count send bursts (see send_detection).
    4. Dispatch: a lookup table maps each channel to its delivered value,
       volume label and goal type.
    5. Pixel health: diagnose automated entries (valid or not) when the order
       has a digital or newsletter placement.
    6. Rollup: overall report completion (capped at 100%) and delivery
       percent (uncapped, over-delivery is surfaced).
    7. Persist: overwrite the order's delivery_summary column.

Entry Points:
    - build_delivery_summary(): pure assembly over already-loaded rows.
    - resync_delivery_summary(): explicit synchronous recompute; raises when
      the order or its inventory snapshot is missing.
    - refresh_delivery_summary(): best-effort variant used as a side effect of
      entry writes. Never raises; a stale summary is corrected by the next
      write or an explicit resync.

Concurrency:
    Two writers on the same order may each recompute from their own read of
    the entry set; the last write wins. Because every recompute is a full,
    deterministic rebuild the next mutation restores consistency.

Usage:
    from delivery_backend.services.delivery_summary import refresh_delivery_summary

    await refresh_delivery_summary(order_id, conn=db)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
from asyncpg import Connection

from delivery_backend.core.config import get_settings
from delivery_backend.core.database import decode_json, get_db_pool
from delivery_backend.core.exceptions import (
    InventorySnapshotMissingError,
    OrderNotFoundError,
)
from delivery_backend.models.enums import (
    GoalType,
    PerformanceChannel,
    PerformanceSource,
    PixelHealthStatus,
    ValidationStatus,
)
from delivery_backend.models.schemas import ChannelDelivery, DeliverySummary, PixelHealth
from delivery_backend.services.send_detection import (
    DEFAULT_GAP_DAYS,
    PlacementSendDates,
    count_newsletter_sends,
    to_day,
)
from delivery_backend.sql.delivery_queries import (
    get_order_for_summary_query,
    get_summary_entries_query,
    get_update_delivery_summary_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FAILED_VALIDATION_STATUSES = frozenset({
    ValidationStatus.BAD_PIXEL.value,
    ValidationStatus.INVALID_ORDER_ID.value,
    ValidationStatus.INVALID_TRAFFIC.value,
})

# itemName written by pixel ingestion when a fire carries no creative attribution
TRACKING_PIXEL_ITEM_NAME: str = 'tracking-pixel'

DIGITAL_CHANNELS = frozenset({
    PerformanceChannel.WEBSITE.value,
    PerformanceChannel.STREAMING.value,
})

# Channels whose placements are measured by tracking pixels
PIXEL_TRACKED_CHANNELS = DIGITAL_CHANNELS | {PerformanceChannel.NEWSLETTER.value}

METRIC_FIELDS: tuple = (
    'impressions',
    'clicks',
    'reach',
    'insertions',
    'spotsAired',
    'downloads',
    'posts',
    'circulation',
)

PIXEL_WARNING_IMPRESSION_THRESHOLD: int = 10

PIXEL_HEALTH_MESSAGES: Dict[PixelHealthStatus, str] = {
    PixelHealthStatus.ERROR: (
        'Tracking pixel problems detected: some automated entries failed validation '
        'or are missing creative attribution.'
    ),
    PixelHealthStatus.NO_DATA: (
        'No automated tracking data received yet. Confirm the tracking pixels are installed.'
    ),
    PixelHealthStatus.WARNING: (
        'Tracking pixels are firing but no meaningful ad impressions have been recorded.'
    ),
    PixelHealthStatus.HEALTHY: 'Tracking pixels are reporting normally.',
}

_FRAME_COLUMNS: List[str] = [
    'channel',
    'item_path',
    'item_name',
    'day',
    'source',
    'validation_status',
    *METRIC_FIELDS,
]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ChannelTotals:
    """Summed volume for the valid entries of one channel."""
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    insertions: int = 0
    spotsAired: int = 0
    downloads: int = 0
    posts: int = 0
    circulation: int = 0
    report_count: int = 0
    sends: int = 0


@dataclass(frozen=True)
class ChannelRule:
    """How delivered volume is measured for a channel."""
    volume_label: str
    goal_type: GoalType
    delivered: Callable[[ChannelTotals], int]


@dataclass
class ChannelGoal:
    """Expected placements and summed goal value for one channel."""
    count: int = 0
    goal: float = 0.0


@dataclass
class ExpectedGoals:
    """Goals resolved from an order's inventory snapshot."""
    by_channel: Dict[str, ChannelGoal] = field(default_factory=dict)
    total_expected_reports: int = 0
    total_expected_goal: float = 0.0
    subscribers_by_item_path: Dict[str, float] = field(default_factory=dict)

    @property
    def has_pixel_tracked_placement(self) -> bool:
        return any(channel in PIXEL_TRACKED_CHANNELS for channel in self.by_channel)


# =============================================================================
# Channel Dispatch Table
# =============================================================================


def _impressions(totals: ChannelTotals) -> int:
    return totals.impressions


def _sends(totals: ChannelTotals) -> int:
    return totals.sends


def _reports(totals: ChannelTotals) -> int:
    return totals.report_count


CHANNEL_RULES: Dict[str, ChannelRule] = {
    'website': ChannelRule('Impressions', GoalType.IMPRESSIONS, _impressions),
    'streaming': ChannelRule('Impressions', GoalType.IMPRESSIONS, _impressions),
    'newsletter': ChannelRule('Sends', GoalType.FREQUENCY, _sends),
    'podcast': ChannelRule('Episodes', GoalType.FREQUENCY, _reports),
    'radio': ChannelRule('Spots', GoalType.FREQUENCY, _reports),
    'print': ChannelRule('Insertions', GoalType.FREQUENCY, _reports),
    'social_media': ChannelRule('Posts', GoalType.FREQUENCY, _reports),
    'social': ChannelRule('Posts', GoalType.FREQUENCY, _reports),
}

DEFAULT_CHANNEL_RULE = ChannelRule('Units', GoalType.FREQUENCY, _reports)


def normalize_channel(channel: Optional[str]) -> str:
    """Lower-case, trimmed channel key; 'other' when missing."""
    value = (channel or '').strip().lower()
    return value or PerformanceChannel.OTHER.value


def get_channel_rule(channel: Optional[str]) -> ChannelRule:
    """Look up the dispatch rule for a channel, case-insensitively."""
    return CHANNEL_RULES.get(normalize_channel(channel), DEFAULT_CHANNEL_RULE)


# =============================================================================
# Entry Classification Helpers
# =============================================================================


def is_failed_validation(status: Optional[str]) -> bool:
    return status in FAILED_VALIDATION_STATUSES


def has_real_item_name(item_name: Optional[str]) -> bool:
    """True when an entry carries creative attribution."""
    if item_name is None or not isinstance(item_name, str):
        return False
    name = item_name.strip()
    return bool(name) and name != TRACKING_PIXEL_ITEM_NAME


def round_percent(numerator: float, denominator: float) -> int:
    """
    Percentage rounded half up; 0 when the denominator is not positive.
    """
    if not denominator or denominator <= 0:
        return 0
    return int(math.floor(numerator / denominator * 100 + 0.5))


def _as_number(value: Any) -> float:
    # Volumes and goals are non-negative; anything unusable counts as 0
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) and number > 0 else 0


def _row_value(row: Mapping[str, Any], key: str, default: Any = None) -> Any:
    try:
        value = row[key]
    except KeyError:
        return default
    return default if value is None else value


# =============================================================================
# Step 1: Expected Goals
# =============================================================================


def iter_inventory_items(selected_inventory: Any) -> Iterable[Dict[str, Any]]:
    """
    Yield inventory items from an order's selected inventory snapshot.

    Accepts the stored shape ({"publications": [{"inventoryItems": [...]}]}),
    a single publication ({"inventoryItems": [...]}), or a bare item list.
    """
    if not selected_inventory:
        return
    if isinstance(selected_inventory, list):
        for item in selected_inventory:
            if isinstance(item, dict):
                yield item
        return
    if not isinstance(selected_inventory, dict):
        return
    if 'publications' in selected_inventory:
        for publication in selected_inventory.get('publications') or []:
            if not isinstance(publication, dict):
                continue
            yield from iter_inventory_items(publication.get('inventoryItems') or [])
        return
    yield from iter_inventory_items(selected_inventory.get('inventoryItems') or [])


def resolve_expected_goals(
    selected_inventory: Any,
    delivery_goals: Optional[Mapping[str, Any]],
) -> ExpectedGoals:
    """
    Sum placement counts and goal values per channel from the inventory snapshot.

    Excluded items are skipped. A placement without a goal counts toward the
    expected report total with a goal of 0.
    """
    if not isinstance(delivery_goals, Mapping):
        delivery_goals = {}
    expected = ExpectedGoals()

    for item in iter_inventory_items(selected_inventory):
        if item.get('isExcluded'):
            continue

        channel = normalize_channel(item.get('channel'))
        item_path = item.get('itemPath') or ''
        goal_entry = delivery_goals.get(item_path) or {}
        goal_value = _as_number(goal_entry.get('goalValue')) if isinstance(goal_entry, dict) else 0

        channel_goal = expected.by_channel.setdefault(channel, ChannelGoal())
        channel_goal.count += 1
        channel_goal.goal += goal_value

        expected.total_expected_reports += 1
        expected.total_expected_goal += goal_value

        audience = item.get('audienceMetrics') or {}
        subscribers = _as_number(audience.get('subscribers')) if isinstance(audience, dict) else 0
        if channel == PerformanceChannel.NEWSLETTER.value and subscribers > 0 and item_path:
            expected.subscribers_by_item_path[item_path] = subscribers

    return expected


# =============================================================================
# Step 2: Entry Frame and Channel Totals
# =============================================================================


def entries_to_frame(entries: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    """
    Flatten performance entry rows into a DataFrame with derived flags.

    Derived columns:
        is_valid: validation status is not a failure code
        is_automated: source == 'automated'
        has_real_name: itemName present and not the tracking-pixel sentinel
        counts_as_report: manual/imported, or automated with a real name
    """
    records = []
    for entry in entries:
        metrics = decode_json(_row_value(entry, 'metrics'), {}) or {}
        date_start = _row_value(entry, 'date_start')
        record = {
            'channel': normalize_channel(_row_value(entry, 'channel')),
            'item_path': _row_value(entry, 'item_path', ''),
            'item_name': _row_value(entry, 'item_name'),
            'day': to_day(date_start).isoformat() if date_start is not None else None,
            'source': _row_value(entry, 'source', PerformanceSource.MANUAL.value),
            'validation_status': _row_value(entry, 'validation_status'),
        }
        for metric in METRIC_FIELDS:
            record[metric] = _as_number(metrics.get(metric))
        records.append(record)

    frame = pd.DataFrame.from_records(records, columns=_FRAME_COLUMNS)
    for metric in METRIC_FIELDS:
        frame[metric] = pd.to_numeric(frame[metric]).fillna(0)

    frame['is_valid'] = ~frame['validation_status'].isin(FAILED_VALIDATION_STATUSES)
    frame['is_automated'] = frame['source'] == PerformanceSource.AUTOMATED.value
    frame['has_real_name'] = frame['item_name'].map(has_real_item_name).astype(bool)
    frame['counts_as_report'] = ~frame['is_automated'] | frame['has_real_name']
    return frame


def aggregate_channel_totals(frame: pd.DataFrame) -> Dict[str, ChannelTotals]:
    """
    Sum metrics and count reports per channel over valid entries only.
    """
    valid = frame[frame['is_valid']]
    if valid.empty:
        return {}

    grouped = valid.groupby('channel')
    sums = grouped[list(METRIC_FIELDS)].sum()
    report_counts = grouped['counts_as_report'].sum()

    totals: Dict[str, ChannelTotals] = {}
    for channel, row in sums.iterrows():
        channel_totals = ChannelTotals(report_count=int(report_counts[channel]))
        for metric in METRIC_FIELDS:
            setattr(channel_totals, metric, int(round(row[metric])))
        totals[channel] = channel_totals
    return totals


# =============================================================================
# Step 3: Newsletter Sends
# =============================================================================


def newsletter_send_groups(frame: pd.DataFrame) -> List[PlacementSendDates]:
    """
    Group valid newsletter entries by placement and day with summed impressions.
    """
    newsletter = frame[
        frame['is_valid']
        & (frame['channel'] == PerformanceChannel.NEWSLETTER.value)
        & frame['day'].notna()
    ]
    if newsletter.empty:
        return []

    daily = newsletter.groupby(['item_path', 'day'])['impressions'].sum()

    groups: Dict[str, PlacementSendDates] = {}
    for (item_path, day), impressions in daily.items():
        group = groups.setdefault(item_path, PlacementSendDates(item_path=item_path))
        group.distinct_dates.append(day)
        group.impressions_by_date[day] = int(impressions)
    return list(groups.values())


# =============================================================================
# Step 5: Pixel Health
# =============================================================================


def diagnose_pixel_health(
    frame: pd.DataFrame,
    checked_at: datetime,
    warning_threshold: int = PIXEL_WARNING_IMPRESSION_THRESHOLD,
) -> PixelHealth:
    """
    Classify automated tracking data for an order.

    Every automated entry is inspected, including ones excluded from delivered
    totals. An entry is bad when its validation status failed or it has no
    creative attribution.

    Returns:
        PixelHealth with one of:
        - error: at least one bad entry
        - no_data: no automated entries at all
        - warning: no named entry with impressions, or total impressions at
          or below warning_threshold
        - healthy: otherwise
    """
    automated = frame[frame['is_automated']]
    total_automated = int(len(automated))
    bad_mask = ~automated['is_valid'] | ~automated['has_real_name']
    bad_count = int(bad_mask.sum())

    if bad_count > 0:
        status = PixelHealthStatus.ERROR
    elif total_automated == 0:
        status = PixelHealthStatus.NO_DATA
    else:
        real_entries = automated[automated['has_real_name'] & (automated['impressions'] > 0)]
        total_impressions = float(automated['impressions'].sum())
        if real_entries.empty or total_impressions <= warning_threshold:
            status = PixelHealthStatus.WARNING
        else:
            status = PixelHealthStatus.HEALTHY

    return PixelHealth(
        status=status,
        message=PIXEL_HEALTH_MESSAGES[status],
        badEntryCount=bad_count,
        totalAutomatedEntries=total_automated,
        lastChecked=checked_at,
    )


# =============================================================================
# Steps 1-6: Summary Assembly
# =============================================================================


def build_delivery_summary(
    selected_inventory: Any,
    delivery_goals: Optional[Mapping[str, Any]],
    entries: Sequence[Mapping[str, Any]],
    gap_days: int = DEFAULT_GAP_DAYS,
    min_volume_ratio: float = 0.0,
    pixel_warning_threshold: int = PIXEL_WARNING_IMPRESSION_THRESHOLD,
    now: Optional[datetime] = None,
) -> DeliverySummary:
    """
    Assemble a DeliverySummary from an order snapshot and its entry rows.

    Pure function: no database access. Entry rows use the performance_entries
    column names (channel, item_path, item_name, date_start, metrics, source,
    validation_status).

    Args:
        selected_inventory: The order's inventory snapshot.
        delivery_goals: Goals keyed by item path ({"goalValue": ...}).
        entries: All non-deleted entries of the order, valid or not.
        gap_days: Newsletter send burst gap.
        min_volume_ratio: Newsletter noise suppression ratio (0 disables).
        pixel_warning_threshold: Impressions at or below which pixel health warns.
        now: Timestamp for lastUpdated / lastChecked (defaults to UTC now).

    Returns:
        DeliverySummary ready to persist.

    Example:
        >>> summary = build_delivery_summary(
        ...     {"publications": [{"inventoryItems": [
        ...         {"itemPath": "web[0]", "channel": "website"}]}]},
        ...     {"web[0]": {"goalValue": 10000}},
        ...     [
        ...         {"channel": "website", "item_path": "web[0]", "item_name": "Leaderboard",
        ...          "date_start": "2024-03-01", "metrics": {"impressions": 5000},
        ...          "source": "automated", "validation_status": "valid"},
        ...         {"channel": "website", "item_path": "web[0]", "item_name": "Leaderboard",
        ...          "date_start": "2024-03-02", "metrics": {"impressions": 6000},
        ...          "source": "automated", "validation_status": "valid"},
        ...     ],
        ... )
        >>> summary.byChannel["website"].deliveryPercent
        110
    """
    now = now or datetime.now(timezone.utc)

    expected = resolve_expected_goals(selected_inventory, delivery_goals)
    frame = entries_to_frame(entries)
    channel_totals = aggregate_channel_totals(frame)

    sends = count_newsletter_sends(
        newsletter_send_groups(frame),
        gap_days=gap_days,
        subscribers_by_item_path=expected.subscribers_by_item_path,
        min_volume_ratio=min_volume_ratio,
    )
    newsletter_key = PerformanceChannel.NEWSLETTER.value
    if newsletter_key in channel_totals:
        channel_totals[newsletter_key].sends = sends

    by_channel: Dict[str, ChannelDelivery] = {}
    total_delivered = 0
    for channel in sorted(set(expected.by_channel) | set(channel_totals)):
        rule = get_channel_rule(channel)
        goal = expected.by_channel.get(channel, ChannelGoal()).goal
        delivered = rule.delivered(channel_totals.get(channel, ChannelTotals()))
        total_delivered += delivered
        by_channel[channel] = ChannelDelivery(
            goal=goal,
            delivered=delivered,
            deliveryPercent=round_percent(delivered, goal),
            goalType=rule.goal_type,
            volumeLabel=rule.volume_label,
        )

    total_reports = sum(t.report_count for t in channel_totals.values())

    pixel_health = None
    if expected.has_pixel_tracked_placement:
        pixel_health = diagnose_pixel_health(frame, now, pixel_warning_threshold)

    return DeliverySummary(
        totalExpectedReports=expected.total_expected_reports,
        totalReportsSubmitted=total_reports,
        reportsPercent=min(100, round_percent(total_reports, expected.total_expected_reports)),
        totalExpectedGoal=expected.total_expected_goal,
        totalDelivered=total_delivered,
        deliveryPercent=round_percent(total_delivered, expected.total_expected_goal),
        byChannel=by_channel,
        pixelHealth=pixel_health,
        lastUpdated=now,
    )


# =============================================================================
# Persistence
# =============================================================================


async def compute_delivery_summary(conn: Connection, order_id: str) -> DeliverySummary:
    """
    Load an order and its entries on `conn` and build its summary.

    Raises:
        OrderNotFoundError: If the order does not exist or was deleted.
        InventorySnapshotMissingError: If the order has no inventory items.
    """
    order = await conn.fetchrow(get_order_for_summary_query(), order_id)
    if order is None:
        raise OrderNotFoundError(order_id)

    selected_inventory = decode_json(order['selected_inventory'])
    if not any(True for _ in iter_inventory_items(selected_inventory)):
        raise InventorySnapshotMissingError(order_id)

    delivery_goals = decode_json(order['delivery_goals'], {}) or {}
    entries = await conn.fetch(get_summary_entries_query(), order_id)

    settings = get_settings()
    return build_delivery_summary(
        selected_inventory,
        delivery_goals,
        entries,
        gap_days=settings.newsletter_send_gap_days,
        min_volume_ratio=settings.newsletter_min_volume_ratio,
        pixel_warning_threshold=settings.pixel_warning_impression_threshold,
    )


async def persist_delivery_summary(
    conn: Connection,
    order_id: str,
    summary: DeliverySummary,
) -> None:
    """Overwrite the stored summary for an order."""
    await conn.execute(
        get_update_delivery_summary_query(),
        summary.model_dump_json(),
        summary.lastUpdated,
        order_id,
    )


async def resync_delivery_summary(
    order_id: str,
    conn: Optional[Connection] = None,
) -> DeliverySummary:
    """
    Recompute and persist an order's delivery summary synchronously.

    Use this when the caller needs the summary to be fresh on return.

    Args:
        order_id: Insertion order id.
        conn: Connection to run on. Request handlers already holding a pooled
            connection must pass it; a second acquire from the same pool can
            wait forever once every connection is held by such a handler.
            When omitted, a connection is acquired from the pool.

    Raises:
        OrderNotFoundError: If the order does not exist or was deleted.
        InventorySnapshotMissingError: If the order has no inventory items.
    """
    if conn is not None:
        summary = await compute_delivery_summary(conn, order_id)
        await persist_delivery_summary(conn, order_id, summary)
    else:
        pool = await get_db_pool()
        async with pool.acquire() as pooled:
            summary = await compute_delivery_summary(pooled, order_id)
            await persist_delivery_summary(pooled, order_id, summary)

    logger.info(
        f"Delivery summary updated for order {order_id}: "
        f"delivered={summary.totalDelivered} goal={summary.totalExpectedGoal} "
        f"({summary.deliveryPercent}%), reports={summary.totalReportsSubmitted}/"
        f"{summary.totalExpectedReports}"
    )
    return summary


async def refresh_delivery_summary(
    order_id: Optional[str],
    conn: Optional[Connection] = None,
) -> Optional[DeliverySummary]:
    """
    Best-effort recompute run after performance entry writes.

    Never raises: the entry write that triggered it has already succeeded and
    must not fail because its summary could not be refreshed. Callers must not
    assume the stored summary is fresh when this returns None.

    Route handlers pass their request connection as `conn` so the refresh
    never needs a second connection from the pool.

    Returns:
        The new summary, or None when nothing was written.
    """
    if not order_id:
        return None

    try:
        return await resync_delivery_summary(order_id, conn)
    except (OrderNotFoundError, InventorySnapshotMissingError) as e:
        logger.warning(f"Skipping delivery summary refresh: {e}")
        return None
    except Exception:
        logger.exception(f"Error updating delivery summary for order {order_id}")
        return None
