"""
Core infrastructure package for the Hub Delivery backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL database connectivity via asyncpg
- FastAPI dependency injection utilities
- Domain exception hierarchy

This module re-exports key components from submodules so callers can write:

    from delivery_backend.core import get_settings, get_db_pool, DBSessionDep

Instead of:

    from delivery_backend.core.config import get_settings
    from delivery_backend.core.database import get_db_pool
    from delivery_backend.core.dependencies import DBSessionDep
"""

# =============================================================================
# Re-exports from delivery_backend.core.config
# =============================================================================
from delivery_backend.core.config import Settings, get_settings

# =============================================================================
# Re-exports from delivery_backend.core.database
# =============================================================================
from delivery_backend.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from delivery_backend.core.dependencies
# =============================================================================
from delivery_backend.core.dependencies import (
    get_db_session,
    get_settings_dependency,
    SettingsDep,
    DBSessionDep,
)

# =============================================================================
# Re-exports from delivery_backend.core.exceptions
# =============================================================================
from delivery_backend.core.exceptions import (
    DeliveryError,
    OrderNotFoundError,
    InventorySnapshotMissingError,
    InvalidSendDateError,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    # FastAPI dependency injection (from dependencies.py)
    'get_db_session',
    'get_settings_dependency',
    'SettingsDep',
    'DBSessionDep',
    # Domain errors (from exceptions.py)
    'DeliveryError',
    'OrderNotFoundError',
    'InventorySnapshotMissingError',
    'InvalidSendDateError',
]
