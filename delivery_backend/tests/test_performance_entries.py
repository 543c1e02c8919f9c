"""
Pytest tests for performance entry rules and routes.

Routes are called directly with a mocked asyncpg connection; the delivery
summary refresh is patched where the router imports it.

Test Classes:
- TestValidatePerformanceEntry: required fields, date range, percent metrics
- TestComputeCtr: CTR derivation and rounding
- TestRowMapping: record_to_entry and the listing summaries
- TestEntryRoutes: list / get / create / update / delete
- TestBulkImport: all-or-nothing bulk insert
- TestRefreshUnderLoad: entry writes refresh on their request connection
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, List
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from delivery_backend.api.performance_entries import (
    create_performance_entries_bulk,
    create_performance_entry,
    delete_performance_entry,
    get_performance_entry,
    list_performance_entries,
    update_performance_entry,
)
from delivery_backend.models.schemas import (
    BulkEntriesRequest,
    PerformanceEntryCreate,
    PerformanceEntryUpdate,
    PerformanceMetrics,
)
from delivery_backend.services.performance_entries import (
    compute_ctr,
    group_entries_by_publication,
    record_to_entry,
    summarize_order_entries,
    validate_performance_entry,
)
from delivery_backend.sql.delivery_queries import get_update_delivery_summary_query
from delivery_backend.sql.entry_queries import get_insert_entry_query
from delivery_backend.tests.conftest import (
    make_inventory,
    make_inventory_item,
    make_order_row,
    make_stored_entry_row,
)


REFRESH_PATH = 'delivery_backend.api.performance_entries.refresh_delivery_summary'


def _payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        'orderId': 'order-1',
        'campaignId': 'camp-1',
        'publicationId': 1042,
        'publicationName': 'Lakeview Weekly',
        'itemPath': 'item[0]',
        'itemName': 'Leaderboard',
        'channel': 'website',
        'dateStart': '2024-03-01',
        'dateEnd': '2024-03-31',
        'metrics': {'impressions': 5000, 'clicks': 42},
        'enteredBy': 'user-1',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def refresh_mock():
    with patch(REFRESH_PATH, new=AsyncMock(return_value=None)) as refresh:
        yield refresh


class TestValidatePerformanceEntry:

    def test_valid_entry(self) -> None:
        entry = PerformanceEntryCreate(**_payload(source='manual'))
        assert validate_performance_entry(entry) == []

    def test_missing_fields_reported_together(self) -> None:
        entry = PerformanceEntryCreate(channel='print')

        errors = validate_performance_entry(entry)

        assert 'orderId is required' in errors
        assert 'itemPath is required' in errors
        assert 'dateStart is required' in errors
        assert 'source is required' in errors
        assert 'channel is required' not in errors

    def test_date_end_before_start(self) -> None:
        entry = PerformanceEntryCreate(**_payload(source='manual', dateEnd='2024-02-01'))
        assert validate_performance_entry(entry) == ['dateEnd must be after dateStart']

    def test_percent_metrics_out_of_range(self) -> None:
        entry = PerformanceEntryCreate(**_payload(
            source='manual',
            metrics={'ctr': 150, 'viewability': -1, 'completionRate': 50},
        ))

        errors = validate_performance_entry(entry)

        assert 'CTR must be between 0 and 100' in errors
        assert 'Viewability must be between 0 and 100' in errors
        assert len(errors) == 2

    def test_unknown_source(self) -> None:
        entry = PerformanceEntryCreate(**_payload(source='scraped'))
        assert any(e.startswith('source must be one of') for e in validate_performance_entry(entry))


class TestComputeCtr:

    def test_two_decimals(self) -> None:
        assert compute_ctr(42, 5000) == 0.84
        assert compute_ctr(1, 3) == 33.33

    def test_half_rounds_up(self) -> None:
        assert compute_ctr(1, 8) == 12.5

    def test_zero_or_missing_impressions(self) -> None:
        assert compute_ctr(5, 0) is None
        assert compute_ctr(None, 100) is None
        assert compute_ctr(5, None) is None


class TestRowMapping:

    def test_record_to_entry(self) -> None:
        entry = record_to_entry(make_stored_entry_row())

        assert entry['orderId'] == 'order-1'
        assert entry['itemPath'] == 'item[0]'
        assert entry['metrics'] == {'impressions': 5000, 'clicks': 42}
        assert entry['dateStart'] == '2024-03-01'
        assert entry['enteredAt'].startswith('2024-04-01T12:00')
        assert entry['updatedAt'] is None

    def test_order_summary(self) -> None:
        entries = [
            record_to_entry(make_stored_entry_row(id='a', date_start=date(2024, 3, 1))),
            record_to_entry(make_stored_entry_row(id='b', date_start=date(2024, 3, 8))),
            record_to_entry(make_stored_entry_row(
                id='c', channel='print', date_start=date(2024, 3, 5),
                metrics={'insertions': 1, 'reach': 9000},
            )),
        ]

        summary = summarize_order_entries(entries)

        assert summary['totalEntries'] == 3
        assert summary['byChannel']['website'] == {
            'count': 2, 'impressions': 10000, 'clicks': 84, 'units': 0,
        }
        assert summary['byChannel']['print']['units'] == 1
        assert summary['dateRange'] == {'earliest': '2024-03-01', 'latest': '2024-03-08'}
        assert summary['totals'] == {'impressions': 10000, 'clicks': 84, 'reach': 9000}

    def test_empty_order_summary(self) -> None:
        summary = summarize_order_entries([])
        assert summary['totalEntries'] == 0
        assert summary['dateRange'] == {'earliest': None, 'latest': None}

    def test_group_by_publication(self) -> None:
        entries = [
            record_to_entry(make_stored_entry_row(id='a')),
            record_to_entry(make_stored_entry_row(
                id='b', publication_id=7, publication_name='Harbor Radio',
                channel='podcast', metrics={'downloads': 300},
            )),
        ]

        groups = group_entries_by_publication(entries)

        assert [g['publicationId'] for g in groups] == [1042, 7]
        assert groups[0]['totals']['impressions'] == 5000
        assert groups[1]['totals']['units'] == 300


@pytest.mark.asyncio
class TestEntryRoutes:

    async def test_list_applies_default_limit(self, mock_conn, mock_settings) -> None:
        mock_conn.fetch.return_value = [make_stored_entry_row()]

        result = await list_performance_entries(
            db=mock_conn, settings=mock_settings, orderId='order-1', campaignId=None,
            publicationId=None, channel=None, dateFrom=None, dateTo=None, limit=None,
        )

        assert result['total'] == 1
        args = mock_conn.fetch.await_args.args
        assert args[1:] == ('order-1', 100)

    async def test_list_clamps_limit(self, mock_conn, mock_settings) -> None:
        await list_performance_entries(
            db=mock_conn, settings=mock_settings, orderId=None, campaignId=None,
            publicationId=None, channel='print', dateFrom=date(2024, 3, 1), dateTo=None,
            limit=5000,
        )

        args = mock_conn.fetch.await_args.args
        assert args[1:] == ('print', date(2024, 3, 1), 500)

    async def test_get_missing_entry(self, mock_conn) -> None:
        mock_conn.fetchrow.return_value = None

        with pytest.raises(HTTPException) as exc:
            await get_performance_entry('nope', db=mock_conn)

        assert exc.value.status_code == 404

    async def test_create_defaults_source_and_derives_ctr(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row()

        result = await create_performance_entry(
            PerformanceEntryCreate(**_payload()), db=mock_conn, current_user=None,
        )

        assert result['success'] is True
        assert result['entry']['orderId'] == 'order-1'
        args = mock_conn.fetchrow.await_args.args
        assert json.loads(args[12]) == {'impressions': 5000, 'clicks': 42, 'ctr': 0.84}
        assert args[13] == 'manual'
        refresh_mock.assert_awaited_once_with('order-1', conn=mock_conn)

    async def test_create_uses_authenticated_user(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row()

        await create_performance_entry(
            PerformanceEntryCreate(**_payload(enteredBy=None)),
            db=mock_conn,
            current_user={'id': 'admin-7'},
        )

        assert mock_conn.fetchrow.await_args.args[16] == 'admin-7'

    async def test_create_rejects_invalid_entry(self, mock_conn, refresh_mock) -> None:
        with pytest.raises(HTTPException) as exc:
            await create_performance_entry(
                PerformanceEntryCreate(**_payload(itemPath=None)), db=mock_conn, current_user=None,
            )

        assert exc.value.status_code == 400
        assert exc.value.detail['details'] == ['itemPath is required']
        mock_conn.fetchrow.assert_not_awaited()
        refresh_mock.assert_not_awaited()

    async def test_update_merges_metrics_and_recomputes_ctr(self, mock_conn, refresh_mock) -> None:
        existing = make_stored_entry_row()
        mock_conn.fetchrow.side_effect = [existing, make_stored_entry_row(updated_by='user-2')]

        result = await update_performance_entry(
            'entry-1',
            PerformanceEntryUpdate(metrics=PerformanceMetrics(clicks=100), updatedBy='user-2'),
            db=mock_conn,
            current_user=None,
        )

        assert result['success'] is True
        args = mock_conn.fetchrow.await_args.args
        assert args[1] == 'item[0]'
        assert json.loads(args[7]) == {'impressions': 5000, 'clicks': 100, 'ctr': 2.0}
        assert args[9] == 'user-2'
        assert args[11] == 'entry-1'
        refresh_mock.assert_awaited_once_with('order-1', conn=mock_conn)

    async def test_update_rejects_automated_entry(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row(source='automated')

        with pytest.raises(HTTPException) as exc:
            await update_performance_entry(
                'entry-1', PerformanceEntryUpdate(notes='fix'), db=mock_conn, current_user=None,
            )

        assert exc.value.status_code == 403
        assert mock_conn.fetchrow.await_count == 1
        refresh_mock.assert_not_awaited()

    async def test_update_missing_entry(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = None

        with pytest.raises(HTTPException) as exc:
            await update_performance_entry(
                'nope', PerformanceEntryUpdate(notes='x'), db=mock_conn, current_user=None,
            )

        assert exc.value.status_code == 404

    async def test_update_rejects_inverted_dates(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row()

        with pytest.raises(HTTPException) as exc:
            await update_performance_entry(
                'entry-1',
                PerformanceEntryUpdate(dateEnd=date(2024, 2, 1)),
                db=mock_conn,
                current_user=None,
            )

        assert exc.value.status_code == 400
        refresh_mock.assert_not_awaited()

    async def test_update_ignores_identity_fields(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.side_effect = [make_stored_entry_row(), make_stored_entry_row()]

        update = PerformanceEntryUpdate.model_validate({'orderId': 'other', 'notes': 'moved'})
        await update_performance_entry('entry-1', update, db=mock_conn, current_user=None)

        args = mock_conn.fetchrow.await_args.args
        assert 'other' not in args
        assert args[8] == 'moved'
        refresh_mock.assert_awaited_once_with('order-1', conn=mock_conn)

    async def test_delete_soft_deletes_and_refreshes(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row()

        result = await delete_performance_entry(
            'entry-1', db=mock_conn, current_user=None, updatedBy='user-2',
        )

        assert result == {'success': True}
        args = mock_conn.execute.await_args.args
        assert args[2:] == ('user-2', 'entry-1')
        refresh_mock.assert_awaited_once_with('order-1', conn=mock_conn)

    async def test_delete_rejects_automated_entry(self, mock_conn, refresh_mock) -> None:
        mock_conn.fetchrow.return_value = make_stored_entry_row(source='automated')

        with pytest.raises(HTTPException) as exc:
            await delete_performance_entry(
                'entry-1', db=mock_conn, current_user=None, updatedBy=None,
            )

        assert exc.value.status_code == 403
        mock_conn.execute.assert_not_awaited()


@pytest.mark.asyncio
class TestBulkImport:

    async def test_inserts_all_and_refreshes_each_order_once(self, mock_conn, refresh_mock) -> None:
        request = BulkEntriesRequest(entries=[
            _payload(),
            _payload(itemPath='item[1]'),
            _payload(orderId='order-2'),
        ])

        result = await create_performance_entries_bulk(request, db=mock_conn, current_user=None)

        assert result == {'success': True, 'inserted': 3}
        rows = mock_conn.executemany.await_args.args[1]
        assert len(rows) == 3
        assert all(row[12] == 'import' for row in rows)
        assert [c.args[0] for c in refresh_mock.await_args_list] == ['order-1', 'order-2']
        assert all(c.kwargs['conn'] is mock_conn for c in refresh_mock.await_args_list)

    async def test_invalid_entry_rejects_whole_batch(self, mock_conn, refresh_mock) -> None:
        request = BulkEntriesRequest(entries=[
            _payload(),
            _payload(itemName=None),
            _payload(publicationId='not-a-number'),
        ])

        with pytest.raises(HTTPException) as exc:
            await create_performance_entries_bulk(request, db=mock_conn, current_user=None)

        assert exc.value.status_code == 400
        detail = exc.value.detail
        assert [e['index'] for e in detail['errors']] == [1, 2]
        assert detail['errors'][0]['errors'] == ['itemName is required']
        assert detail['errors'][1]['errors'][0].startswith('publicationId')
        assert detail['validCount'] == 1
        mock_conn.executemany.assert_not_awaited()
        refresh_mock.assert_not_awaited()

    async def test_empty_batch(self, mock_conn, refresh_mock) -> None:
        with pytest.raises(HTTPException) as exc:
            await create_performance_entries_bulk(
                BulkEntriesRequest(entries=[]), db=mock_conn, current_user=None,
            )

        assert exc.value.status_code == 400


class _BoundedPool:
    """Pool handing out at most `size` connections; extra acquires wait."""

    def __init__(self, size: int) -> None:
        self._slots = asyncio.Semaphore(size)
        self.connections: List[AsyncMock] = []

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[AsyncMock]:
        async with self._slots:
            conn = _order_connection()
            self.connections.append(conn)
            yield conn


def _order_connection() -> AsyncMock:
    inventory = make_inventory(make_inventory_item('item[0]', 'website'))

    async def fetchrow(sql: str, *args: Any) -> Dict[str, Any]:
        await asyncio.sleep(0)
        if sql == get_insert_entry_query():
            return make_stored_entry_row()
        return make_order_row(inventory, {'item[0]': 10000})

    async def fetch(sql: str, *args: Any) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        return []

    conn = AsyncMock()
    conn.fetchrow = AsyncMock(side_effect=fetchrow)
    conn.fetch = AsyncMock(side_effect=fetch)
    conn.execute = AsyncMock(return_value=None)
    return conn


@pytest.mark.asyncio
class TestRefreshUnderLoad:

    async def test_concurrent_creates_do_not_exhaust_pool(self, mock_settings) -> None:
        pool = _BoundedPool(size=2)

        async def request() -> dict:
            async with pool.acquire() as db:
                return await create_performance_entry(
                    PerformanceEntryCreate(**_payload()), db=db, current_user=None,
                )

        with patch(
            'delivery_backend.services.delivery_summary.get_db_pool',
            new=AsyncMock(return_value=pool),
        ) as get_pool:
            results = await asyncio.wait_for(
                asyncio.gather(*(request() for _ in range(4))), timeout=2,
            )

        assert all(result['success'] for result in results)
        get_pool.assert_not_awaited()
        assert len(pool.connections) == 4
        for conn in pool.connections:
            conn.execute.assert_awaited_once()
            assert conn.execute.await_args.args[0] == get_update_delivery_summary_query()
