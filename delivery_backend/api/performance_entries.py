"""
FastAPI router for performance entries.

Performance entries are the unit of delivery reporting: a publisher (or a hub
admin, or the tracking-pixel ingestion pipeline) records what one placement
of an insertion order delivered over a date range. Every write here is
followed by a best-effort refresh of the affected order's deliverySummary.

Key Endpoints:
- GET    /performance-entries                  - Filtered listing, newest first
- GET    /performance-entries/order/{id}       - Entries of an order + quick summary
- GET    /performance-entries/campaign/{id}    - Entries of a campaign by publication
- GET    /performance-entries/{id}             - One entry
- POST   /performance-entries                  - Create (source defaults to 'manual')
- PUT    /performance-entries/{id}             - Update mutable fields
- DELETE /performance-entries/{id}             - Soft delete
- POST   /performance-entries/bulk             - All-or-nothing import (source 'import')

Rules:
- Entries with source 'automated' come from pixel ingestion and cannot be
  edited or deleted through this API (403).
- orderId, campaignId, publicationId, enteredBy and enteredAt never change
  after creation.
- CTR is derived from clicks and impressions on every write.

Response shapes:
- list:     { entries: [...], total }
- order:    { entries: [...], summary: {...} }
- campaign: { entries: [...], byPublication: [...], total }
- one:      { entry }
- create:   { success: true, entry }
- update:   { success: true, entry }
- delete:   { success: true }
- bulk:     { success: true, inserted }
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from delivery_backend.core.dependencies import (
    CurrentUserOptionalDep,
    DBSessionDep,
    SettingsDep,
)
from delivery_backend.core.database import decode_json
from delivery_backend.models.enums import PerformanceSource
from delivery_backend.models.schemas import (
    BulkEntriesRequest,
    PerformanceEntryCreate,
    PerformanceEntryUpdate,
)
from delivery_backend.services.delivery_summary import refresh_delivery_summary
from delivery_backend.services.performance_entries import (
    build_insert_args,
    group_entries_by_publication,
    metrics_to_json,
    record_to_entry,
    summarize_order_entries,
    validate_percent_metrics,
    validate_performance_entry,
    with_ctr,
)
from delivery_backend.sql.entry_queries import (
    get_campaign_entries_query,
    get_entry_by_id_query,
    get_entry_list_query,
    get_insert_entry_query,
    get_order_entries_query,
    get_soft_delete_entry_query,
    get_update_entry_query,
)


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

router = APIRouter()

# Fallback actor for audit fields when no user can be identified
SYSTEM_ACTOR: str = "system"


# =============================================================================
# Helper Functions
# =============================================================================


def _user_id(current_user: Optional[dict]) -> Optional[str]:
    if not current_user:
        return None
    return current_user.get("id")


def _prepare_new_entry(
    entry: PerformanceEntryCreate,
    current_user: Optional[dict],
    default_source: PerformanceSource,
) -> PerformanceEntryCreate:
    """Apply the authenticated user and the default source to a new entry."""
    return entry.model_copy(update={
        "source": entry.source or default_source.value,
        "enteredBy": _user_id(current_user) or entry.enteredBy,
    })


def _format_validation_error(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


async def _get_mutable_entry(db, entry_id: str):
    """
    Load an entry that may be changed through the API.

    Raises:
        HTTPException 404: If the entry does not exist or was deleted.
        HTTPException 403: If the entry came from pixel ingestion.
    """
    existing = await db.fetchrow(get_entry_by_id_query(), entry_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Performance entry not found")
    if existing["source"] == PerformanceSource.AUTOMATED.value:
        logger.warning(f"Rejected change to automated performance entry {entry_id}")
        raise HTTPException(
            status_code=403,
            detail="Automated performance entries cannot be modified",
        )
    return existing


# =============================================================================
# GET /performance-entries - List
# =============================================================================


@router.get("/", response_model=dict)
async def list_performance_entries(
    db: DBSessionDep,
    settings: SettingsDep,
    orderId: Optional[str] = Query(default=None, description="Filter by insertion order"),
    campaignId: Optional[str] = Query(default=None, description="Filter by campaign"),
    publicationId: Optional[int] = Query(default=None, description="Filter by publication"),
    channel: Optional[str] = Query(default=None, description="Filter by channel"),
    dateFrom: Optional[date] = Query(default=None, description="Earliest dateStart (inclusive)"),
    dateTo: Optional[date] = Query(default=None, description="Latest dateStart (inclusive)"),
    limit: Optional[int] = Query(default=None, ge=1, description="Maximum entries to return"),
) -> dict:
    """
    List non-deleted performance entries, newest first.

    limit defaults to settings.default_entry_list_limit and is clamped to
    settings.max_entry_list_limit.
    """
    try:
        effective_limit = min(
            limit or settings.default_entry_list_limit,
            settings.max_entry_list_limit,
        )
        sql, args = get_entry_list_query(
            order_id=orderId,
            campaign_id=campaignId,
            publication_id=publicationId,
            channel=channel,
            date_from=dateFrom,
            date_to=dateTo,
            limit=effective_limit,
        )
        rows = await db.fetch(sql, *args)
        entries = [record_to_entry(row) for row in rows]
        return {"entries": entries, "total": len(entries)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching performance entries: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch performance entries")


# =============================================================================
# GET /performance-entries/order/{order_id}
# =============================================================================


@router.get("/order/{order_id}", response_model=dict)
async def list_order_performance_entries(order_id: str, db: DBSessionDep) -> dict:
    """Entries of one order with a quick per-channel summary."""
    try:
        rows = await db.fetch(get_order_entries_query(), order_id)
        entries = [record_to_entry(row) for row in rows]
        return {"entries": entries, "summary": summarize_order_entries(entries)}

    except Exception as e:
        logger.error(f"Error fetching order performance entries: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch performance entries")


# =============================================================================
# GET /performance-entries/campaign/{campaign_id}
# =============================================================================


@router.get("/campaign/{campaign_id}", response_model=dict)
async def list_campaign_performance_entries(campaign_id: str, db: DBSessionDep) -> dict:
    """Entries of one campaign grouped by publication."""
    try:
        rows = await db.fetch(get_campaign_entries_query(), campaign_id)
        entries = [record_to_entry(row) for row in rows]
        return {
            "entries": entries,
            "byPublication": group_entries_by_publication(entries),
            "total": len(entries),
        }

    except Exception as e:
        logger.error(f"Error fetching campaign performance entries: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch performance entries")


# =============================================================================
# GET /performance-entries/{entry_id}
# =============================================================================


@router.get("/{entry_id}", response_model=dict)
async def get_performance_entry(entry_id: str, db: DBSessionDep) -> dict:
    try:
        row = await db.fetchrow(get_entry_by_id_query(), entry_id)
        if not row:
            raise HTTPException(status_code=404, detail="Performance entry not found")
        return {"entry": record_to_entry(row)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching performance entry {entry_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch performance entry")


# =============================================================================
# POST /performance-entries/bulk
# =============================================================================


@router.post("/bulk", response_model=dict, status_code=201)
async def create_performance_entries_bulk(
    request: BulkEntriesRequest,
    db: DBSessionDep,
    current_user: CurrentUserOptionalDep,
) -> dict:
    """
    Import many entries at once.

    All-or-nothing: if any entry fails validation nothing is written and the
    response lists the problems per entry index. Each affected order's
    summary is refreshed once after the insert.

    Raises:
        HTTPException 400: Empty request, or one or more invalid entries.
    """
    if not request.entries:
        raise HTTPException(status_code=400, detail="entries array is required")

    prepared: List[PerformanceEntryCreate] = []
    errors: List[Dict[str, Any]] = []

    for index, raw_entry in enumerate(request.entries):
        try:
            entry = PerformanceEntryCreate.model_validate(raw_entry)
        except ValidationError as e:
            errors.append({
                "index": index,
                "errors": [_format_validation_error(err) for err in e.errors()],
            })
            continue

        entry = _prepare_new_entry(entry, current_user, PerformanceSource.IMPORT)
        problems = validate_performance_entry(entry)
        if problems:
            errors.append({"index": index, "errors": problems})
        else:
            prepared.append(entry)

    if errors:
        logger.warning(
            f"Bulk import rejected: {len(errors)} of {len(request.entries)} entries invalid"
        )
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Some entries failed validation",
                "errors": errors,
                "validCount": len(prepared),
            },
        )

    try:
        entered_at = datetime.now(timezone.utc)
        await db.executemany(
            get_insert_entry_query(),
            [build_insert_args(entry, uuid4().hex, entered_at) for entry in prepared],
        )
        logger.info(f"Bulk imported {len(prepared)} performance entries")

        for order_id in dict.fromkeys(entry.orderId for entry in prepared):
            await refresh_delivery_summary(order_id, conn=db)

        return {"success": True, "inserted": len(prepared)}

    except Exception as e:
        logger.error(f"Error creating bulk performance entries: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create performance entries")


# =============================================================================
# POST /performance-entries - Create
# =============================================================================


@router.post("/", response_model=dict, status_code=201)
async def create_performance_entry(
    entry_data: PerformanceEntryCreate,
    db: DBSessionDep,
    current_user: CurrentUserOptionalDep,
) -> dict:
    """
    Create one performance entry and refresh its order's delivery summary.

    Raises:
        HTTPException 400: If validation fails ({ error, details }).
        HTTPException 500: If the insert fails.
    """
    entry = _prepare_new_entry(entry_data, current_user, PerformanceSource.MANUAL)
    errors = validate_performance_entry(entry)
    if errors:
        logger.warning(f"POST /performance-entries rejected: {errors}")
        raise HTTPException(
            status_code=400,
            detail={"error": "Validation failed", "details": errors},
        )

    try:
        entry_id = uuid4().hex
        row = await db.fetchrow(
            get_insert_entry_query(),
            *build_insert_args(entry, entry_id, datetime.now(timezone.utc)),
        )
        if not row:
            raise HTTPException(status_code=500, detail="Failed to create performance entry")

        logger.info(
            f"Created performance entry {entry_id} for order {entry.orderId} "
            f"({entry.channel}, {entry.itemPath})"
        )

        await refresh_delivery_summary(entry.orderId, conn=db)

        return {"success": True, "entry": record_to_entry(row)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating performance entry: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create performance entry")


# =============================================================================
# PUT /performance-entries/{entry_id} - Update
# =============================================================================


@router.put("/{entry_id}", response_model=dict)
async def update_performance_entry(
    entry_id: str,
    update_data: PerformanceEntryUpdate,
    db: DBSessionDep,
    current_user: CurrentUserOptionalDep,
) -> dict:
    """
    Update the mutable fields of a manual or imported entry.

    Metrics are merged over the stored metrics and CTR is recomputed from the
    merged clicks and impressions.

    Raises:
        HTTPException 400: Invalid date range or percentage metric.
        HTTPException 403: Entry is automated.
        HTTPException 404: Entry not found.
    """
    try:
        existing = await _get_mutable_entry(db, entry_id)
        changes = update_data.model_dump(exclude_unset=True)

        metrics = dict(decode_json(existing["metrics"], {}) or {})
        if update_data.metrics is not None:
            metrics.update(update_data.metrics.model_dump(exclude_none=True))
        metrics = with_ctr(metrics)

        date_start = changes.get("dateStart") or existing["date_start"]
        date_end = changes.get("dateEnd", existing["date_end"])

        errors = []
        for field_name in ("itemPath", "itemName", "channel"):
            if field_name in changes and not changes[field_name]:
                errors.append(f"{field_name} cannot be empty")
        if date_start and date_end and date_end < date_start:
            errors.append("dateEnd must be after dateStart")
        errors.extend(validate_percent_metrics(update_data.metrics))
        if errors:
            raise HTTPException(
                status_code=400,
                detail={"error": "Validation failed", "details": errors},
            )

        updated_by = _user_id(current_user) or update_data.updatedBy or SYSTEM_ACTOR
        row = await db.fetchrow(
            get_update_entry_query(),
            changes.get("itemPath", existing["item_path"]),
            changes.get("itemName", existing["item_name"]),
            changes.get("channel", existing["channel"]),
            changes.get("dimensions", existing["dimensions"]),
            date_start,
            date_end,
            metrics_to_json(metrics),
            changes.get("notes", existing["notes"]),
            updated_by,
            datetime.now(timezone.utc),
            entry_id,
        )
        if not row:
            raise HTTPException(status_code=404, detail="Performance entry not found")

        logger.info(f"Updated performance entry {entry_id} (order {existing['order_id']})")

        await refresh_delivery_summary(existing["order_id"], conn=db)

        return {"success": True, "entry": record_to_entry(row)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating performance entry {entry_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update performance entry")


# =============================================================================
# DELETE /performance-entries/{entry_id} - Soft Delete
# =============================================================================


@router.delete("/{entry_id}", response_model=dict)
async def delete_performance_entry(
    entry_id: str,
    db: DBSessionDep,
    current_user: CurrentUserOptionalDep,
    updatedBy: Optional[str] = Query(default=None, description="User performing the delete"),
) -> dict:
    """
    Soft delete a manual or imported entry; the row is kept for audit.

    Raises:
        HTTPException 403: Entry is automated.
        HTTPException 404: Entry not found.
    """
    try:
        existing = await _get_mutable_entry(db, entry_id)

        await db.execute(
            get_soft_delete_entry_query(),
            datetime.now(timezone.utc),
            _user_id(current_user) or updatedBy or SYSTEM_ACTOR,
            entry_id,
        )
        logger.info(f"Deleted performance entry {entry_id} (order {existing['order_id']})")

        await refresh_delivery_summary(existing["order_id"], conn=db)

        return {"success": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting performance entry {entry_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete performance entry")
