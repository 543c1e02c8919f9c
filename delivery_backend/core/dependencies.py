"""
FastAPI dependency injection module for the Hub Delivery backend.

Provides reusable dependencies for database sessions, configuration access
and the (placeholder) optional current user.

Key Dependencies Provided:
- get_db_session: Async generator yielding database connections from the pool
- get_settings_dependency: Returns the cached Settings singleton
- SettingsDep: Type alias for injecting Settings into endpoints
- DBSessionDep: Type alias for injecting database connections into endpoints
- CurrentUserOptionalDep: Type alias for the optional authenticated user

Usage Examples:
    @router.get("/order/{order_id}")
    async def list_order_entries(order_id: str, db: DBSessionDep) -> dict:
        rows = await db.fetch(ORDER_ENTRIES_QUERY, order_id)
        ...
"""

from typing import AsyncGenerator, Annotated, Optional

from fastapi import Depends
from asyncpg import Connection

from delivery_backend.core.config import Settings, get_settings
from delivery_backend.core.database import get_db_pool


# =============================================================================
# Database Session Dependency
# =============================================================================

async def get_db_session() -> AsyncGenerator[Connection, None]:
    """
    Yield an async database connection from the pool.

    The connection is released back to the pool when the endpoint completes,
    whether it succeeded or raised.

    Yields:
        asyncpg.Connection: An active database connection from the pool.
    """
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can use FastAPI's override
    mechanism:

        app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

DBSessionDep = Annotated[Connection, Depends(get_db_session)]


# =============================================================================
# Authentication Dependencies (Placeholder)
# =============================================================================

async def get_current_user_optional() -> Optional[dict]:
    """
    Placeholder for optional authentication - returns None.

    Authentication is handled by the gateway in front of this service. Routes
    that record who made a change fall back to the user id supplied in the
    request body, then to 'system'.

    Returns:
        None: Always returns None in the current implementation.
    """
    return None


CurrentUserOptionalDep = Annotated[Optional[dict], Depends(get_current_user_optional)]
