"""
Pydantic models for visitor analytics data.
"""
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field

# =============================================================================
# Raw Data Models
# =============================================================================

class VisitorRow(BaseModel):
    """A stored visit. `id` and `created_at` are assigned by the store."""
    id: int | None = None
    created_at: datetime | None = None

    ip_address: str  # anonymized

    # Browser & device
    user_agent: str | None = None
    browser_name: str | None = None
    browser_version: str | None = None
    os_name: str | None = None
    device_type: str | None = None  # Mobile, Tablet, Desktop
    platform: str | None = None

    # Display
    screen_width: int | None = None
    screen_height: int | None = None
    viewport_width: int | None = None
    viewport_height: int | None = None
    color_depth: int | None = None

    # Locale
    timezone_offset: int | None = None  # minutes
    timezone: str | None = None
    language: str | None = None
    user_language: str | None = None

    # Navigation
    referrer: str | None = None
    page_visited: str | None = None

    # Fingerprint
    canvas_fingerprint: str | None = None
    audio_fingerprint: str | None = None
    webgl_renderer: str | None = None
    touch_support: bool | None = None
    hardware_concurrency: int | None = None

    # Geography
    country_code: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    consent_granted: bool = True

    @classmethod
    def column_names(cls) -> list[str]:
        """Columns written on insert (store-assigned ones excluded)."""
        return [name for name in cls.model_fields if name not in ("id", "created_at")]


# Fields stored as INTEGER; sanitized numbers arrive as floats
INTEGER_FIELDS = frozenset({
    "screen_width", "screen_height", "viewport_width", "viewport_height",
    "color_depth", "timezone_offset", "hardware_concurrency",
})


# =============================================================================
# Aggregated Stats Models
# =============================================================================

class CountStat(BaseModel):
    """One row of a frequency table."""
    value: str
    count: int
    percentage: float = 0.0


class TimelinePoint(BaseModel):
    """Visits for one day."""
    date: date
    visitors: int = 0
    unique_visitors: int = 0


class GeoPoint(BaseModel):
    """A visit with coordinates, for the heatmap."""
    latitude: float
    longitude: float
    country_code: str | None = None
    city: str | None = None


class AnalyticsSummary(BaseModel):
    """Headline numbers for the dashboard."""
    total_visitors: int = 0
    unique_visitors: int = 0  # distinct anonymized IPs, last 30 days
    visitors_24h: int = 0
    visitors_7d: int = 0
    visitors_30d: int = 0
    growth_rate: float = 0.0  # last 7 days vs the 7 before, percent
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PrivacyStats(BaseModel):
    """Consent breakdown of stored rows."""
    total_records: int = 0
    consented_records: int = 0
    non_consented_records: int = 0
    consent_rate: float = 0.0
    consent_granted: bool = True  # current process-wide flag


class HealthStatus(BaseModel):
    """Store reachability."""
    status: str  # healthy, unhealthy
    database: str
    recent_visitors: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReportData(BaseModel):
    """Everything the dashboard page renders in one response."""
    site: str
    days: int
    summary: AnalyticsSummary
    timeline: list[TimelinePoint]
    countries: list[CountStat]
    browsers: list[CountStat]
    devices: list[CountStat]
    operating_systems: list[CountStat]
    referrers: list[CountStat]
    top_pages: list[CountStat]
