"""
Pydantic request/response models for the Hub Delivery backend.

This module provides data validation and serialization for the performance
entry API and for the delivery summary persisted on insertion orders.

Field names are camelCase to match the JSON contract consumed by the hub
dashboard and by the billing logic that reads `deliverySummary` off the order.

All models use Pydantic v2 syntax.
"""

from datetime import datetime, date as DateType
from typing import Dict, List, Optional, Any, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator

from delivery_backend.models.enums import (
    GoalType,
    PixelHealthStatus,
)


# =============================================================================
# Performance Entry Models
# =============================================================================


class PerformanceMetrics(BaseModel):
    """
    Channel-specific metrics for a performance entry.

    All fields are optional; only metrics relevant to the entry's channel are
    populated. `ctr` is derived from clicks and impressions on write.
    """
    model_config = ConfigDict(
        extra='ignore',
        json_schema_extra={
            "example": {
                "impressions": 5000,
                "clicks": 42,
                "reach": 3100
            }
        }
    )

    # Universal
    impressions: Optional[int] = Field(default=None, ge=0)
    reach: Optional[int] = Field(default=None, ge=0)

    # Digital (website, newsletter, streaming)
    clicks: Optional[int] = Field(default=None, ge=0)
    ctr: Optional[float] = Field(default=None, description="clicks / impressions * 100")
    viewability: Optional[float] = None

    # Print
    insertions: Optional[int] = Field(default=None, ge=0)
    circulation: Optional[int] = Field(default=None, ge=0)

    # Radio
    spotsAired: Optional[int] = Field(default=None, ge=0)
    frequency: Optional[float] = None

    # Podcast
    downloads: Optional[int] = Field(default=None, ge=0)
    listens: Optional[int] = Field(default=None, ge=0)
    completionRate: Optional[float] = None

    # Events
    attendance: Optional[int] = Field(default=None, ge=0)

    # Social
    posts: Optional[int] = Field(default=None, ge=0)
    engagements: Optional[int] = Field(default=None, ge=0)
    shares: Optional[int] = Field(default=None, ge=0)
    videoViews: Optional[int] = Field(default=None, ge=0)


class PerformanceEntryCreate(BaseModel):
    """
    Request body for creating a performance entry.

    Required fields are checked by validate_performance_entry() rather than by
    Pydantic so the API can answer with the full list of problems in a single
    400 response, for single and bulk submissions alike.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra='ignore',
        json_schema_extra={
            "example": {
                "orderId": "665f1c2e9a0b4c0012ab34cd",
                "campaignId": "camp-2024-spring",
                "publicationId": 1042,
                "publicationName": "Lakeview Weekly",
                "itemPath": "distributionChannels.newsletters[0].advertisingOpportunities[1]",
                "itemName": "Newsletter Leaderboard",
                "channel": "newsletter",
                "dateStart": "2024-03-04",
                "metrics": {"impressions": 8200, "clicks": 61}
            }
        }
    )

    orderId: Optional[str] = None
    campaignId: Optional[str] = None
    publicationId: Optional[int] = None
    publicationName: Optional[str] = None
    itemPath: Optional[str] = None
    itemName: Optional[str] = None
    channel: Optional[str] = None
    dimensions: Optional[str] = None
    dateStart: Optional[DateType] = None
    dateEnd: Optional[DateType] = None
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    source: Optional[str] = None
    validationStatus: Optional[str] = None
    notes: Optional[str] = None
    enteredBy: Optional[str] = None


class PerformanceEntryUpdate(BaseModel):
    """
    Request body for updating a performance entry.

    Identity fields (orderId, campaignId, publicationId, enteredBy, enteredAt)
    are not part of this model and therefore cannot be changed.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')

    itemPath: Optional[str] = None
    itemName: Optional[str] = None
    channel: Optional[str] = None
    dimensions: Optional[str] = None
    dateStart: Optional[DateType] = None
    dateEnd: Optional[DateType] = None
    metrics: Optional[PerformanceMetrics] = None
    notes: Optional[str] = None
    updatedBy: Optional[str] = None


class BulkEntriesRequest(BaseModel):
    """Request body for POST /performance-entries/bulk."""
    entries: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Delivery Summary Models
# =============================================================================


def _whole_number(value: Union[int, float]) -> Union[int, float]:
    """Goal values are stored as int when they have no fractional part."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class ChannelDelivery(BaseModel):
    """
    Delivered-vs-goal volume for one channel of an order.

    deliveryPercent is not capped: over-delivery is a valid, surfaced state.
    """
    model_config = ConfigDict(
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "goal": 10000,
                "delivered": 11000,
                "deliveryPercent": 110,
                "goalType": "impressions",
                "volumeLabel": "Impressions"
            }
        }
    )

    goal: Union[int, float] = Field(default=0, ge=0)
    delivered: int = Field(default=0, ge=0)
    deliveryPercent: int = Field(default=0, ge=0)
    goalType: GoalType
    volumeLabel: str

    @field_validator("goal")
    @classmethod
    def whole_goal_as_int(cls, v):
        return _whole_number(v)


class PixelHealth(BaseModel):
    """Tracking-pixel diagnosis for orders with digital or newsletter placements."""
    model_config = ConfigDict(use_enum_values=True)

    status: PixelHealthStatus
    message: str
    badEntryCount: int = Field(default=0, ge=0)
    totalAutomatedEntries: int = Field(default=0, ge=0)
    lastChecked: datetime


class DeliverySummary(BaseModel):
    """
    Delivery reconciliation result embedded on an insertion order.

    Recomputed wholesale on every performance entry mutation.
    reportsPercent is capped at 100 (completion metric); deliveryPercent is not
    (volume metric).
    """
    model_config = ConfigDict(use_enum_values=True)

    totalExpectedReports: int = Field(default=0, ge=0)
    totalReportsSubmitted: int = Field(default=0, ge=0)
    reportsPercent: int = Field(default=0, ge=0, le=100)
    totalExpectedGoal: Union[int, float] = Field(default=0, ge=0)
    totalDelivered: int = Field(default=0, ge=0)
    deliveryPercent: int = Field(default=0, ge=0)
    byChannel: Dict[str, ChannelDelivery] = Field(default_factory=dict)
    pixelHealth: Optional[PixelHealth] = None
    lastUpdated: datetime

    @field_validator("totalExpectedGoal")
    @classmethod
    def whole_total_goal_as_int(cls, v):
        return _whole_number(v)


class DeliverySummaryResponse(BaseModel):
    """Response for the order delivery-summary endpoints."""
    orderId: str
    deliverySummary: Optional[DeliverySummary] = None
