"""
FastAPI router for insertion order delivery summaries.

Key Endpoints:
- GET  /orders/{order_id}/delivery-summary         - Stored summary
- POST /orders/{order_id}/delivery-summary/resync  - Recompute now and return it

The stored summary is refreshed automatically after every performance entry
write; the resync endpoint exists for when that best-effort refresh failed or
when the order's goals or inventory changed.
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from delivery_backend.core.database import decode_json
from delivery_backend.core.dependencies import DBSessionDep
from delivery_backend.core.exceptions import (
    InventorySnapshotMissingError,
    OrderNotFoundError,
)
from delivery_backend.models.schemas import DeliverySummary, DeliverySummaryResponse
from delivery_backend.services.delivery_summary import resync_delivery_summary
from delivery_backend.sql.delivery_queries import get_delivery_summary_query


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{order_id}/delivery-summary", response_model=DeliverySummaryResponse)
async def get_order_delivery_summary(order_id: str, db: DBSessionDep) -> DeliverySummaryResponse:
    """
    Return the stored delivery summary of an order.

    deliverySummary is null when the order has never been reconciled, or when
    the stored document predates the current summary shape (resync fixes it).

    Raises:
        HTTPException 404: If the order does not exist.
    """
    try:
        row = await db.fetchrow(get_delivery_summary_query(), order_id)
        if not row:
            raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")

        stored = decode_json(row["delivery_summary"])
        summary = None
        if stored:
            try:
                summary = DeliverySummary.model_validate(stored)
            except ValidationError:
                logger.warning(
                    f"Stored delivery summary for order {order_id} is outdated; resync required"
                )

        return DeliverySummaryResponse(orderId=order_id, deliverySummary=summary)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching delivery summary for order {order_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch delivery summary")


@router.post("/{order_id}/delivery-summary/resync", response_model=DeliverySummaryResponse)
async def resync_order_delivery_summary(order_id: str) -> DeliverySummaryResponse:
    """
    Recompute an order's delivery summary synchronously.

    Raises:
        HTTPException 404: If the order or its inventory snapshot is missing.
        HTTPException 500: If the recompute fails.
    """
    try:
        summary = await resync_delivery_summary(order_id)
        return DeliverySummaryResponse(orderId=order_id, deliverySummary=summary)

    except (OrderNotFoundError, InventorySnapshotMissingError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error resyncing delivery summary for order {order_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to resync delivery summary")
