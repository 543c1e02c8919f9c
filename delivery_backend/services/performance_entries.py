"""
Performance entry business rules.

Validation, CTR derivation, row mapping and the lightweight listing summaries
used by the performance entries API. Delivery reconciliation itself lives in
delivery_summary.
"""

import json
import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from delivery_backend.core.database import decode_json
from delivery_backend.models.enums import PerformanceSource
from delivery_backend.models.schemas import PerformanceEntryCreate, PerformanceMetrics


# =============================================================================
# Constants
# =============================================================================

REQUIRED_ENTRY_FIELDS: tuple = (
    'orderId',
    'campaignId',
    'publicationId',
    'publicationName',
    'itemPath',
    'itemName',
    'channel',
    'dateStart',
    'source',
    'enteredBy',
)

PERCENT_METRICS: Dict[str, str] = {
    'ctr': 'CTR',
    'viewability': 'Viewability',
    'completionRate': 'Completion rate',
}

VALID_SOURCES = frozenset(source.value for source in PerformanceSource)


# =============================================================================
# Validation
# =============================================================================


def validate_performance_entry(entry: PerformanceEntryCreate) -> List[str]:
    """
    Check an entry before it is written.

    Returns:
        List of human readable problems; empty when the entry is valid.
    """
    errors: List[str] = []

    for field_name in REQUIRED_ENTRY_FIELDS:
        if not getattr(entry, field_name):
            errors.append(f"{field_name} is required")

    if entry.source and entry.source not in VALID_SOURCES:
        errors.append(f"source must be one of: {', '.join(sorted(VALID_SOURCES))}")

    if entry.dateStart and entry.dateEnd and entry.dateEnd < entry.dateStart:
        errors.append("dateEnd must be after dateStart")

    errors.extend(validate_percent_metrics(entry.metrics))
    return errors


def validate_percent_metrics(metrics: Optional[PerformanceMetrics]) -> List[str]:
    """Percentage metrics must fall within 0-100."""
    if metrics is None:
        return []
    errors = []
    for field_name, label in PERCENT_METRICS.items():
        value = getattr(metrics, field_name)
        if value is not None and not 0 <= value <= 100:
            errors.append(f"{label} must be between 0 and 100")
    return errors


def compute_ctr(clicks: Optional[float], impressions: Optional[float]) -> Optional[float]:
    """
    Click-through rate as a percentage with two decimals.

    >>> compute_ctr(42, 5000)
    0.84
    >>> compute_ctr(3, 0) is None
    True
    """
    if clicks is None or impressions is None or impressions == 0:
        return None
    return math.floor(clicks / impressions * 10000 + 0.5) / 100


def with_ctr(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a metrics dict with ctr derived from clicks/impressions."""
    result = dict(metrics)
    if result.get('clicks') is not None and result.get('impressions') is not None:
        result['ctr'] = compute_ctr(result['clicks'], result['impressions'])
    return result


def metrics_to_json(metrics: Dict[str, Any]) -> str:
    """Serialize metrics for a JSONB column, dropping unset values."""
    return json.dumps({key: value for key, value in metrics.items() if value is not None})


# =============================================================================
# Row Mapping
# =============================================================================


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def record_to_entry(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert a performance_entries row to the camelCase API shape.
    """
    return {
        "id": str(record.get("id", "")),
        "orderId": record.get("order_id"),
        "campaignId": record.get("campaign_id"),
        "publicationId": record.get("publication_id"),
        "publicationName": record.get("publication_name"),
        "itemPath": record.get("item_path"),
        "itemName": record.get("item_name"),
        "channel": record.get("channel"),
        "dimensions": record.get("dimensions"),
        "dateStart": _iso(record.get("date_start")),
        "dateEnd": _iso(record.get("date_end")),
        "metrics": decode_json(record.get("metrics"), {}) or {},
        "source": record.get("source"),
        "validationStatus": record.get("validation_status"),
        "notes": record.get("notes"),
        "enteredBy": record.get("entered_by"),
        "enteredAt": _iso(record.get("entered_at")),
        "updatedBy": record.get("updated_by"),
        "updatedAt": _iso(record.get("updated_at")),
    }


def build_insert_args(
    entry: PerformanceEntryCreate,
    entry_id: str,
    entered_at: datetime,
) -> List[Any]:
    """
    Positional parameters for get_insert_entry_query(), with CTR derived.
    """
    metrics = with_ctr(entry.metrics.model_dump(exclude_none=True))
    return [
        entry_id,
        entry.orderId,
        entry.campaignId,
        entry.publicationId,
        entry.publicationName,
        entry.itemPath,
        entry.itemName,
        entry.channel,
        entry.dimensions,
        entry.dateStart,
        entry.dateEnd,
        metrics_to_json(metrics),
        entry.source,
        entry.validationStatus,
        entry.notes,
        entry.enteredBy,
        entered_at,
    ]


# =============================================================================
# Listing Summaries
# =============================================================================


def _metric(entry: Mapping[str, Any], name: str) -> float:
    return (entry.get("metrics") or {}).get(name) or 0


def _units(entry: Mapping[str, Any], include_downloads: bool = False) -> float:
    names = ('insertions', 'spotsAired', 'posts', 'downloads') if include_downloads \
        else ('insertions', 'spotsAired', 'posts')
    for name in names:
        value = _metric(entry, name)
        if value:
            return value
    return 0


def summarize_order_entries(entries: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Quick per-channel totals over an order's entries (as returned by record_to_entry).

    Counts every entry regardless of validation status; the reconciled view
    is the order's deliverySummary.
    """
    by_channel: Dict[str, Dict[str, float]] = {}
    totals = {"impressions": 0, "clicks": 0, "reach": 0}

    for entry in entries:
        channel = by_channel.setdefault(
            entry.get("channel") or "other",
            {"count": 0, "impressions": 0, "clicks": 0, "units": 0},
        )
        channel["count"] += 1
        channel["impressions"] += _metric(entry, "impressions")
        channel["clicks"] += _metric(entry, "clicks")
        channel["units"] += _units(entry)

        totals["impressions"] += _metric(entry, "impressions")
        totals["clicks"] += _metric(entry, "clicks")
        totals["reach"] += _metric(entry, "reach")

    dates = sorted(e["dateStart"] for e in entries if e.get("dateStart"))
    return {
        "totalEntries": len(entries),
        "byChannel": by_channel,
        "dateRange": {
            "earliest": dates[0] if dates else None,
            "latest": dates[-1] if dates else None,
        },
        "totals": totals,
    }


def group_entries_by_publication(entries: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Group a campaign's entries by publication with per-publication totals."""
    by_publication: Dict[Any, Dict[str, Any]] = {}

    for entry in entries:
        publication = by_publication.setdefault(entry.get("publicationId"), {
            "publicationId": entry.get("publicationId"),
            "publicationName": entry.get("publicationName"),
            "entries": [],
            "totals": {"impressions": 0, "clicks": 0, "units": 0, "reach": 0},
        })
        publication["entries"].append(entry)
        publication["totals"]["impressions"] += _metric(entry, "impressions")
        publication["totals"]["clicks"] += _metric(entry, "clicks")
        publication["totals"]["reach"] += _metric(entry, "reach")
        publication["totals"]["units"] += _units(entry, include_downloads=True)

    return list(by_publication.values())
