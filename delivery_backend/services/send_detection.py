"""
Newsletter Send-Burst Detection Service.

Newsletter placements do not report "one row per send". Tracking pixels fire
as subscribers open the email, so a single send produces impressions spread
over several consecutive days (the send day plus trickle opens). This module
turns those daily impression dates back into a count of discrete sends.

Algorithm Overview:
    Dates for one placement are reduced to UTC day ordinals and sorted. A new
    burst starts whenever two adjacent days are more than `gap_days` apart;
    the number of bursts is the number of sends. A gap exactly equal to
    `gap_days` stays inside the current burst.

Noise Suppression:
    When a placement's subscriber count is known and a minimum volume ratio is
    configured, days whose impressions fall below
    `subscribers * min_volume_ratio` are dropped before clustering so that
    late bounce/trickle opens do not register as extra sends.

Both functions are pure and storage-independent.

Usage:
    from delivery_backend.services.send_detection import (
        count_send_bursts,
        count_newsletter_sends,
        PlacementSendDates,
    )

    count_send_bursts(["2024-03-05", "2024-03-01", "2024-03-03"])   # 1
    count_send_bursts(["2024-01-01", "2024-01-04"], gap_days=2)     # 2
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np

from delivery_backend.core.exceptions import InvalidSendDateError


# =============================================================================
# Constants
# =============================================================================

# Largest gap (in days) between impression days that still belongs to one send
DEFAULT_GAP_DAYS: int = 2

DateLike = Union[str, date, datetime]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class PlacementSendDates:
    """
    Impression days observed for one newsletter placement.

    Attributes:
        item_path: Placement identity on the order.
        distinct_dates: Calendar days with impressions for the placement.
        impressions_by_date: Optional impression total per ISO day, used by
            subscriber-volume noise suppression.
    """
    item_path: str
    distinct_dates: List[DateLike] = field(default_factory=list)
    impressions_by_date: Dict[str, int] = field(default_factory=dict)


# =============================================================================
# Date Normalisation
# =============================================================================


def to_day(value: DateLike) -> date:
    """
    Normalise a date-like value to a calendar day.

    Strings must be ISO calendar dates (YYYY-MM-DD). Aware datetimes are
    converted to UTC before the day is taken; naive datetimes are assumed to
    already be UTC.

    Raises:
        InvalidSendDateError: If the value cannot be interpreted as a day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        # Full ISO timestamps, e.g. "2024-03-01T14:05:00Z"
        try:
            return to_day(datetime.fromisoformat(text.replace('Z', '+00:00')))
        except ValueError:
            raise InvalidSendDateError(value) from None
    raise InvalidSendDateError(value)


def _day_ordinals(dates: Iterable[DateLike]) -> np.ndarray:
    return np.sort(np.array([to_day(d).toordinal() for d in dates], dtype=np.int64))


# =============================================================================
# Burst Counting
# =============================================================================


def count_send_bursts(dates: Sequence[DateLike], gap_days: int = DEFAULT_GAP_DAYS) -> int:
    """
    Count discrete send bursts in a set of impression days.

    Args:
        dates: Unordered calendar days, duplicates allowed.
        gap_days: Largest day gap that keeps two adjacent days in the same
            burst. Comparison is strictly greater-than.

    Returns:
        Number of bursts; 0 for empty input.

    Raises:
        InvalidSendDateError: If any date is malformed.
        ValueError: If gap_days is negative.

    Example:
        >>> count_send_bursts(["2024-01-01", "2024-01-03"], 2)
        1
        >>> count_send_bursts(["2024-01-01", "2024-01-04"], 2)
        2
    """
    if gap_days < 0:
        raise ValueError(f"gap_days must be >= 0, got {gap_days}")

    ordinals = _day_ordinals(dates)
    if ordinals.size == 0:
        return 0

    gaps = np.diff(ordinals)
    return int(np.count_nonzero(gaps > gap_days)) + 1


def _filter_low_volume_days(
    group: PlacementSendDates,
    subscribers: Optional[float],
    min_volume_ratio: float,
) -> List[DateLike]:
    if not subscribers or subscribers <= 0 or min_volume_ratio <= 0:
        return list(group.distinct_dates)

    floor = subscribers * min_volume_ratio
    kept: List[DateLike] = []
    for d in group.distinct_dates:
        volume = group.impressions_by_date.get(to_day(d).isoformat())
        # Days without a recorded volume are kept
        if volume is None or volume >= floor:
            kept.append(d)
    return kept


def count_newsletter_sends(
    groups: Sequence[PlacementSendDates],
    gap_days: int = DEFAULT_GAP_DAYS,
    subscribers_by_item_path: Optional[Mapping[str, float]] = None,
    min_volume_ratio: float = 0.0,
) -> int:
    """
    Count newsletter sends across all placements of an order.

    Bursts are detected independently per item path and summed, so the result
    is additive across placements. Groups that share an item path are merged
    before clustering.

    Args:
        groups: Impression days per placement.
        gap_days: Burst gap threshold passed to count_send_bursts().
        subscribers_by_item_path: Optional subscriber counts per item path for
            noise suppression.
        min_volume_ratio: Fraction of subscribers a day must reach to count.
            0 disables noise suppression.

    Returns:
        Total number of detected sends.
    """
    merged: Dict[str, PlacementSendDates] = {}
    for group in groups:
        target = merged.setdefault(group.item_path, PlacementSendDates(item_path=group.item_path))
        target.distinct_dates.extend(group.distinct_dates)
        for day, volume in group.impressions_by_date.items():
            target.impressions_by_date[day] = target.impressions_by_date.get(day, 0) + volume

    subscribers_by_item_path = subscribers_by_item_path or {}
    total = 0
    for item_path, group in merged.items():
        dates = _filter_low_volume_days(
            group,
            subscribers_by_item_path.get(item_path),
            min_volume_ratio,
        )
        total += count_send_bursts(dates, gap_days)
    return total
