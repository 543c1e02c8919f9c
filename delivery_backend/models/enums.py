"""
Enumeration definitions for the Hub Delivery backend.

All enums inherit from both `str` and `Enum` so they serialize as plain
strings in Pydantic models and JSON responses, and compare equal to the raw
strings stored in the database.
"""

from enum import Enum


class PerformanceChannel(str, Enum):
    """
    Channel a performance entry reports on.

    `social` and `events` are legacy values still present on older entries;
    they are accepted on read and dispatched like `social_media` / `other`.
    """
    WEBSITE = "website"
    NEWSLETTER = "newsletter"
    PODCAST = "podcast"
    RADIO = "radio"
    PRINT = "print"
    SOCIAL_MEDIA = "social_media"
    SOCIAL = "social"
    STREAMING = "streaming"
    EVENTS = "events"
    OTHER = "other"


class PerformanceSource(str, Enum):
    """
    Origin of a performance entry.

    - manual: publisher self-report or hub admin entry
    - import: admin bulk import
    - automated: tracking-pixel ingestion; immutable through the API
    """
    MANUAL = "manual"
    IMPORT = "import"
    AUTOMATED = "automated"


class ValidationStatus(str, Enum):
    """
    Validation flag set upstream on automated entries.

    Anything other than VALID (or an unset flag) excludes the entry from
    delivered totals.
    """
    VALID = "valid"
    BAD_PIXEL = "bad_pixel"
    INVALID_ORDER_ID = "invalid_orderId"
    INVALID_TRAFFIC = "invalid_traffic"


class GoalType(str, Enum):
    """
    How a placement's delivery goal is measured.

    Digital channels count impressions; everything else counts discrete
    occurrences (sends, spots, insertions, posts, episodes).
    """
    IMPRESSIONS = "impressions"
    FREQUENCY = "frequency"


class PixelHealthStatus(str, Enum):
    """Diagnostic state of automated tracking-pixel data for an order."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    NO_DATA = "no_data"
