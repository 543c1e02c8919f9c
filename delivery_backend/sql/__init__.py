"""
SQL Query Module for the Hub Delivery backend.

Provides parameterized SQL queries for:
- Insertion orders and their delivery summaries (delivery_queries)
- Performance entry CRUD (entry_queries)

Keeps SQL text out of the services and routes so business logic and data
access stay separate.

Example usage:
    from delivery_backend.sql import get_order_for_summary_query, get_entry_list_query

    order = await conn.fetchrow(get_order_for_summary_query(), order_id)
    sql, args = get_entry_list_query(order_id=order_id, limit=50)
    rows = await conn.fetch(sql, *args)
"""

# =============================================================================
# DELIVERY QUERIES - orders and delivery summaries
# =============================================================================

from delivery_backend.sql.delivery_queries import (
    get_order_for_summary_query,
    get_summary_entries_query,
    get_update_delivery_summary_query,
    get_delivery_summary_query,
    get_active_order_ids_query,
)

# =============================================================================
# ENTRY QUERIES - performance entry CRUD
# =============================================================================

from delivery_backend.sql.entry_queries import (
    get_entry_list_query,
    get_order_entries_query,
    get_campaign_entries_query,
    get_entry_by_id_query,
    get_insert_entry_query,
    get_update_entry_query,
    get_soft_delete_entry_query,
)

__all__ = [
    # Delivery queries
    'get_order_for_summary_query',
    'get_summary_entries_query',
    'get_update_delivery_summary_query',
    'get_delivery_summary_query',
    'get_active_order_ids_query',
    # Entry queries
    'get_entry_list_query',
    'get_order_entries_query',
    'get_campaign_entries_query',
    'get_entry_by_id_query',
    'get_insert_entry_query',
    'get_update_entry_query',
    'get_soft_delete_entry_query',
]
