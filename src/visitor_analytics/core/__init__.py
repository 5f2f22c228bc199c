"""
Core analytics module.

Contains the data models and the client for the visitors table.
"""

from .client import VisitorStore
from .models import (
    AnalyticsSummary,
    CountStat,
    GeoPoint,
    HealthStatus,
    PrivacyStats,
    ReportData,
    TimelinePoint,
    VisitorRow,
)

__all__ = [
    "VisitorRow",
    "CountStat", "TimelinePoint", "GeoPoint",
    "AnalyticsSummary", "PrivacyStats", "HealthStatus", "ReportData",
    "VisitorStore",
]
