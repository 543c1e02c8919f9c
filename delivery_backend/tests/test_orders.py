"""
Pytest tests for the order delivery-summary routes.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from delivery_backend.api.orders import (
    get_order_delivery_summary,
    resync_order_delivery_summary,
)
from delivery_backend.core.exceptions import (
    InventorySnapshotMissingError,
    OrderNotFoundError,
)
from delivery_backend.models.schemas import DeliverySummary


RESYNC_PATH = 'delivery_backend.api.orders.resync_delivery_summary'

STORED_SUMMARY = {
    'totalExpectedReports': 2,
    'totalReportsSubmitted': 1,
    'reportsPercent': 50,
    'totalExpectedGoal': 10000,
    'totalDelivered': 11000,
    'deliveryPercent': 110,
    'byChannel': {
        'website': {
            'goal': 10000,
            'delivered': 11000,
            'deliveryPercent': 110,
            'goalType': 'impressions',
            'volumeLabel': 'Impressions',
        }
    },
    'pixelHealth': None,
    'lastUpdated': '2024-04-01T12:00:00+00:00',
}


@pytest.mark.asyncio
class TestGetOrderDeliverySummary:

    async def test_returns_stored_summary(self, mock_conn) -> None:
        mock_conn.fetchrow.return_value = {
            'id': 'order-1',
            'delivery_summary': json.dumps(STORED_SUMMARY),
        }

        response = await get_order_delivery_summary('order-1', db=mock_conn)

        assert response.orderId == 'order-1'
        assert response.deliverySummary.deliveryPercent == 110
        assert response.deliverySummary.byChannel['website'].volumeLabel == 'Impressions'

    async def test_never_computed(self, mock_conn) -> None:
        mock_conn.fetchrow.return_value = {'id': 'order-1', 'delivery_summary': None}

        response = await get_order_delivery_summary('order-1', db=mock_conn)

        assert response.deliverySummary is None

    async def test_outdated_summary_shape(self, mock_conn) -> None:
        mock_conn.fetchrow.return_value = {
            'id': 'order-1',
            'delivery_summary': {'totalGoalValue': 100, 'percentComplete': 10},
        }

        response = await get_order_delivery_summary('order-1', db=mock_conn)

        assert response.deliverySummary is None

    async def test_missing_order(self, mock_conn) -> None:
        mock_conn.fetchrow.return_value = None

        with pytest.raises(HTTPException) as exc:
            await get_order_delivery_summary('missing', db=mock_conn)

        assert exc.value.status_code == 404


@pytest.mark.asyncio
class TestResyncOrderDeliverySummary:

    async def test_returns_fresh_summary(self) -> None:
        summary = DeliverySummary(lastUpdated=datetime(2024, 4, 1, tzinfo=timezone.utc))
        with patch(RESYNC_PATH, new=AsyncMock(return_value=summary)) as resync:
            response = await resync_order_delivery_summary('order-1')

        resync.assert_awaited_once_with('order-1')
        assert response.deliverySummary == summary

    @pytest.mark.parametrize('error', [
        OrderNotFoundError('order-1'),
        InventorySnapshotMissingError('order-1'),
    ])
    async def test_missing_order_or_inventory(self, error) -> None:
        with patch(RESYNC_PATH, new=AsyncMock(side_effect=error)):
            with pytest.raises(HTTPException) as exc:
                await resync_order_delivery_summary('order-1')

        assert exc.value.status_code == 404

    async def test_unexpected_failure(self) -> None:
        with patch(RESYNC_PATH, new=AsyncMock(side_effect=RuntimeError('boom'))):
            with pytest.raises(HTTPException) as exc:
                await resync_order_delivery_summary('order-1')

        assert exc.value.status_code == 500
