"""
Parameterized SQL for insertion orders and their delivery summaries.

Tables:
    publication_insertion_orders
        id, campaign_id, publication_id, publication_name,
        selected_inventory JSONB, delivery_goals JSONB, delivery_summary JSONB,
        created_at, updated_at, deleted_at

    performance_entries
        id, order_id, campaign_id, publication_id, publication_name,
        item_path, item_name, channel, dimensions, date_start, date_end,
        metrics JSONB, source, validation_status, notes,
        entered_by, entered_at, updated_by, updated_at, deleted_at

Soft-deleted rows (deleted_at IS NOT NULL) are never read by these queries.
"""

from typing import Any, List, Optional, Tuple


# Columns the reconciliation needs from each entry
SUMMARY_ENTRY_COLUMNS: str = """
    id, channel, item_path, item_name, date_start, metrics,
    source, validation_status
"""


def get_order_for_summary_query() -> str:
    """
    SQL to load the inventory snapshot and goals of one order.

    Parameters:
        $1: order id
    """
    return """
        SELECT id, campaign_id, publication_id,
               selected_inventory, delivery_goals
        FROM publication_insertion_orders
        WHERE id = $1
          AND deleted_at IS NULL
    """


def get_summary_entries_query() -> str:
    """
    SQL to load every non-deleted performance entry of one order.

    Validity filtering happens in Python: pixel health needs the invalid
    automated rows that delivered totals exclude.

    Parameters:
        $1: order id
    """
    return f"""
        SELECT {SUMMARY_ENTRY_COLUMNS}
        FROM performance_entries
        WHERE order_id = $1
          AND deleted_at IS NULL
        ORDER BY date_start ASC
    """


def get_update_delivery_summary_query() -> str:
    """
    SQL to overwrite an order's delivery summary wholesale.

    Parameters:
        $1: delivery summary JSON text
        $2: updated_at timestamp
        $3: order id
    """
    return """
        UPDATE publication_insertion_orders
        SET delivery_summary = $1::jsonb,
            updated_at = $2
        WHERE id = $3
          AND deleted_at IS NULL
    """


def get_delivery_summary_query() -> str:
    """
    SQL to read the stored delivery summary of one order.

    Parameters:
        $1: order id
    """
    return """
        SELECT id, delivery_summary
        FROM publication_insertion_orders
        WHERE id = $1
          AND deleted_at IS NULL
    """


def get_active_order_ids_query(campaign_id: Optional[str] = None) -> Tuple[str, List[Any]]:
    """
    SQL to list non-deleted order ids, optionally for a single campaign.

    Returns:
        Tuple of (query, args).
    """
    if campaign_id:
        return (
            """
            SELECT id
            FROM publication_insertion_orders
            WHERE deleted_at IS NULL
              AND campaign_id = $1
            ORDER BY id
            """,
            [campaign_id],
        )
    return (
        """
        SELECT id
        FROM publication_insertion_orders
        WHERE deleted_at IS NULL
        ORDER BY id
        """,
        [],
    )
