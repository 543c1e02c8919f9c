"""
Parameterized SQL for performance entry CRUD.

All reads exclude soft-deleted rows. Deletes are soft: deleted_at is set and
the row is kept for audit.
"""

from datetime import date
from typing import Any, List, Optional, Tuple


ENTRY_COLUMNS: str = """
    id, order_id, campaign_id, publication_id, publication_name,
    item_path, item_name, channel, dimensions, date_start, date_end,
    metrics, source, validation_status, notes,
    entered_by, entered_at, updated_by, updated_at
"""


def get_entry_list_query(
    order_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    publication_id: Optional[int] = None,
    channel: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 100,
) -> Tuple[str, List[Any]]:
    """
    Build a filtered entry listing, newest first.

    Returns:
        Tuple of (query, args) with $n placeholders numbered to match args.

    Example:
        >>> sql, args = get_entry_list_query(order_id="o1", channel="print", limit=20)
        >>> args
        ['o1', 'print', 20]
    """
    conditions = ["deleted_at IS NULL"]
    args: List[Any] = []

    def add(condition: str, value: Any) -> None:
        args.append(value)
        conditions.append(condition.format(n=len(args)))

    if order_id:
        add("order_id = ${n}", order_id)
    if campaign_id:
        add("campaign_id = ${n}", campaign_id)
    if publication_id is not None:
        add("publication_id = ${n}", publication_id)
    if channel:
        add("channel = ${n}", channel)
    if date_from:
        add("date_start >= ${n}", date_from)
    if date_to:
        add("date_start <= ${n}", date_to)

    args.append(limit)
    query = f"""
        SELECT {ENTRY_COLUMNS}
        FROM performance_entries
        WHERE {' AND '.join(conditions)}
        ORDER BY date_start DESC
        LIMIT ${len(args)}
    """
    return query, args


def get_order_entries_query() -> str:
    """Entries of one order. $1: order id."""
    return f"""
        SELECT {ENTRY_COLUMNS}
        FROM performance_entries
        WHERE order_id = $1
          AND deleted_at IS NULL
        ORDER BY date_start DESC, item_path ASC
    """


def get_campaign_entries_query() -> str:
    """Entries of one campaign. $1: campaign id."""
    return f"""
        SELECT {ENTRY_COLUMNS}
        FROM performance_entries
        WHERE campaign_id = $1
          AND deleted_at IS NULL
        ORDER BY publication_id ASC, date_start DESC
    """


def get_entry_by_id_query() -> str:
    """One non-deleted entry. $1: entry id."""
    return f"""
        SELECT {ENTRY_COLUMNS}
        FROM performance_entries
        WHERE id = $1
          AND deleted_at IS NULL
    """


def get_insert_entry_query() -> str:
    """
    Insert one entry and return it.

    Parameters ($1..$17):
        id, order_id, campaign_id, publication_id, publication_name,
        item_path, item_name, channel, dimensions, date_start, date_end,
        metrics (JSON text), source, validation_status, notes,
        entered_by, entered_at
    """
    return f"""
        INSERT INTO performance_entries (
            id, order_id, campaign_id, publication_id, publication_name,
            item_path, item_name, channel, dimensions, date_start, date_end,
            metrics, source, validation_status, notes,
            entered_by, entered_at
        ) VALUES (
            $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
            $12::jsonb, $13, $14, $15, $16, $17
        )
        RETURNING {ENTRY_COLUMNS}
    """


def get_update_entry_query() -> str:
    """
    Overwrite the mutable fields of an entry and return it.

    Parameters ($1..$11):
        item_path, item_name, channel, dimensions, date_start, date_end,
        metrics (JSON text), notes, updated_by, updated_at, id
    """
    return f"""
        UPDATE performance_entries
        SET item_path = $1,
            item_name = $2,
            channel = $3,
            dimensions = $4,
            date_start = $5,
            date_end = $6,
            metrics = $7::jsonb,
            notes = $8,
            updated_by = $9,
            updated_at = $10
        WHERE id = $11
          AND deleted_at IS NULL
        RETURNING {ENTRY_COLUMNS}
    """


def get_soft_delete_entry_query() -> str:
    """
    Soft delete an entry.

    Parameters:
        $1: deleted_at / updated_at timestamp
        $2: updated_by
        $3: entry id
    """
    return """
        UPDATE performance_entries
        SET deleted_at = $1,
            updated_at = $1,
            updated_by = $2
        WHERE id = $3
          AND deleted_at IS NULL
    """
