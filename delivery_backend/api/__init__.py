"""
Backend API package initialization.

This package contains FastAPI router modules for the Hub Delivery service:
- performance_entries: Performance entry CRUD and bulk import
- orders: Insertion order delivery summaries and resync
"""

from fastapi import APIRouter

from delivery_backend.api.performance_entries import router as performance_entries_router
from delivery_backend.api.orders import router as orders_router

# Create main API router
api_router = APIRouter()

api_router.include_router(
    performance_entries_router,
    prefix="/performance-entries",
    tags=["performance-entries"],
)
api_router.include_router(orders_router, prefix="/orders", tags=["orders"])

__all__ = [
    "api_router",
    "performance_entries_router",
    "orders_router",
]
