"""
Package initialization file for backend models.

Re-exports all Pydantic schemas and enumerations so other modules can write:

    from delivery_backend.models import DeliverySummary, PerformanceChannel
"""

# =============================================================================
# Enums
# =============================================================================

from delivery_backend.models.enums import (
    PerformanceChannel,
    PerformanceSource,
    ValidationStatus,
    GoalType,
    PixelHealthStatus,
)

# =============================================================================
# Schemas
# =============================================================================

from delivery_backend.models.schemas import (
    # Performance entries
    PerformanceMetrics,
    PerformanceEntryCreate,
    PerformanceEntryUpdate,
    BulkEntriesRequest,
    # Delivery summary
    ChannelDelivery,
    PixelHealth,
    DeliverySummary,
    DeliverySummaryResponse,
)

__all__ = [
    # Enums
    'PerformanceChannel',
    'PerformanceSource',
    'ValidationStatus',
    'GoalType',
    'PixelHealthStatus',
    # Performance entries
    'PerformanceMetrics',
    'PerformanceEntryCreate',
    'PerformanceEntryUpdate',
    'BulkEntriesRequest',
    # Delivery summary
    'ChannelDelivery',
    'PixelHealth',
    'DeliverySummary',
    'DeliverySummaryResponse',
]
