"""
Aggregate reports over stored visits.

Each method runs its store queries and formats the rows into response
models. Store failures are logged here with their detail and re-raised
as `ExternalDependencyError` carrying only a generic public message.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .core.client import VisitorStore
from .core.models import (
    AnalyticsSummary,
    CountStat,
    GeoPoint,
    HealthStatus,
    PrivacyStats,
    ReportData,
    TimelinePoint,
)
from .errors import ExternalDependencyError, ValidationError
from .privacy import ConsentState

logger = logging.getLogger(__name__)

MAX_DAYS = 730
MAX_LIMIT = 1000


def validate_days(days: int) -> int:
    if days < 1 or days > MAX_DAYS:
        raise ValidationError([f"Parameter 'days' must be between 1 and {MAX_DAYS}"])
    return days


def validate_limit(limit: int) -> int:
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationError([f"Parameter 'limit' must be between 1 and {MAX_LIMIT}"])
    return limit


def to_count_stats(rows: List[Dict[str, Any]]) -> List[CountStat]:
    """Format [{value, count}] rows, adding each row's share of the total."""
    total = sum(r.get("count") or 0 for r in rows)
    return [
        CountStat(
            value=str(r.get("value")),
            count=r.get("count") or 0,
            percentage=round(((r.get("count") or 0) / total) * 100, 1) if total > 0 else 0,
        )
        for r in rows
    ]


def growth_rate(current: int, previous: int) -> float:
    """Percent change; 100 when there was nothing before."""
    if previous > 0:
        return round(((current - previous) / previous) * 100, 2)
    return 100.0 if current > 0 else 0.0


async def gather_or_cancel(*coros):
    """Run coroutines concurrently. If one fails the rest are cancelled.

    Every task is awaited before the first error is re-raised, so no
    failure is left unretrieved.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ReportingHandler:
    """Builds dashboard reports from a `VisitorStore`."""

    def __init__(self, store: VisitorStore, consent: Optional[ConsentState] = None, default_days: int = 30):
        self.store = store
        self.consent = consent or ConsentState()
        self.default_days = default_days

    def _since(self, days: int, now: Optional[datetime] = None) -> datetime:
        return (now or datetime.now(timezone.utc)) - timedelta(days=days)

    async def _run(self, name: str, coro, public_message: str):
        """Await a store call, logging and re-wrapping failures."""
        try:
            return await coro
        except ExternalDependencyError as e:
            logger.error(f"Error fetching {name}: {e}", exc_info=True)
            raise ExternalDependencyError(name, public_message=public_message) from e

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    async def summary(self, now: Optional[datetime] = None) -> AnalyticsSummary:
        """Headline counts plus week-over-week growth."""
        now = now or datetime.now(timezone.utc)
        s = self.store

        counts = gather_or_cancel(
            s.count_visitors(),
            s.count_visitors(since=self._since(30, now), distinct_ip=True),
            s.count_visitors(since=self._since(1, now)),
            s.count_visitors(since=self._since(7, now)),
            s.count_visitors(since=self._since(30, now)),
            s.count_visitors(since=self._since(14, now), until=self._since(7, now)),
        )
        total, unique, day, week, month, prev_week = await self._run(
            "analytics summary", counts, "Failed to fetch analytics"
        )
        return AnalyticsSummary(
            total_visitors=total,
            unique_visitors=unique,
            visitors_24h=day,
            visitors_7d=week,
            visitors_30d=month,
            growth_rate=growth_rate(week, prev_week),
            timestamp=now,
        )

    # -------------------------------------------------------------------------
    # Frequency tables
    # -------------------------------------------------------------------------

    async def _breakdown(
        self,
        column: str,
        label: str,
        days: Optional[int],
        limit: Optional[int],
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[CountStat]:
        days = validate_days(days or self.default_days)
        if limit is not None:
            validate_limit(limit)
        rows = await self._run(
            label,
            self.store.count_by(column, since=self._since(days), limit=limit, filters=filters),
            f"Failed to fetch {label}",
        )
        return to_count_stats(rows)

    async def countries(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        return await self._breakdown("country_code", "country data", days, limit)

    async def browsers(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        return await self._breakdown("browser_name", "browser stats", days, limit)

    async def devices(self, days: Optional[int] = None) -> List[CountStat]:
        return await self._breakdown("device_type", "device stats", days, None)

    async def operating_systems(self, days: Optional[int] = None) -> List[CountStat]:
        return await self._breakdown("os_name", "OS stats", days, None)

    async def languages(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        return await self._breakdown("language", "languages", days, limit)

    async def referrers(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        return await self._breakdown("referrer", "referrer stats", days, limit)

    async def top_pages(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        return await self._breakdown("page_visited", "top pages", days, limit)

    async def regions(self, country: str, days: Optional[int] = None) -> List[CountStat]:
        """Regions within one country (ISO code, any case)."""
        return await self._breakdown(
            "region", "regions", days, None, filters={"country_code": country.upper()}
        )

    async def cities(self, country: str, days: Optional[int] = None, limit: int = 20) -> List[CountStat]:
        return await self._breakdown(
            "city", "cities", days, limit, filters={"country_code": country.upper()}
        )

    async def screen_resolutions(self, days: Optional[int] = None, limit: int = 10) -> List[CountStat]:
        days = validate_days(days or self.default_days)
        validate_limit(limit)
        rows = await self._run(
            "screen resolutions",
            self.store.count_screen_resolutions(since=self._since(days), limit=limit),
            "Failed to fetch screen resolutions",
        )
        return to_count_stats(rows)

    async def browser_versions(self, days: Optional[int] = None, limit: int = 20) -> List[CountStat]:
        days = validate_days(days or self.default_days)
        validate_limit(limit)
        rows = await self._run(
            "browser versions",
            self.store.count_browser_versions(since=self._since(days), limit=limit),
            "Failed to fetch browser versions",
        )
        return to_count_stats(rows)

    # -------------------------------------------------------------------------
    # Time series and rows
    # -------------------------------------------------------------------------

    async def timeline(self, days: Optional[int] = None) -> List[TimelinePoint]:
        """Daily visits, oldest first. Days without visits are filled with zeros."""
        days = validate_days(days or self.default_days)
        now = datetime.now(timezone.utc)
        rows = await self._run(
            "timeline data",
            self.store.daily_counts(self._since(days, now)),
            "Failed to fetch timeline data",
        )

        by_day = {date.fromisoformat(str(r["date"])): r for r in rows if r.get("date")}
        start = self._since(days, now).date()
        points = []
        for offset in range(days + 1):
            day = start + timedelta(days=offset)
            row = by_day.get(day, {})
            points.append(TimelinePoint(
                date=day,
                visitors=row.get("visitors") or 0,
                unique_visitors=row.get("unique_visitors") or 0,
            ))
        return points

    async def geo_points(self, limit: int = 1000) -> List[GeoPoint]:
        validate_limit(limit)
        rows = await self._run(
            "geo heatmap", self.store.geo_points(limit), "Failed to fetch geo heatmap"
        )
        return [GeoPoint(**r) for r in rows]

    async def recent_visitors(self, limit: int = 50) -> List[Dict[str, Any]]:
        validate_limit(limit)
        return await self._run(
            "visitor details", self.store.recent_visitors(limit), "Failed to fetch visitor details"
        )

    async def privacy_stats(self) -> PrivacyStats:
        counts = await self._run(
            "privacy stats", self.store.consent_counts(), "Failed to fetch privacy stats"
        )
        total = counts["total_records"]
        consented = counts["consented_records"]
        return PrivacyStats(
            total_records=total,
            consented_records=consented,
            non_consented_records=counts["non_consented_records"],
            consent_rate=round((consented / total) * 100, 2) if total > 0 else 0,
            consent_granted=self.consent.consent_granted(),
        )

    async def health(self) -> HealthStatus:
        """Store status. Never raises."""
        try:
            healthy = await self.store.ping()
            recent = await self.store.count_visitors(since=self._since(1)) if healthy else 0
        except ExternalDependencyError as e:
            logger.error(f"Error checking system health: {e}")
            return HealthStatus(status="unhealthy", database="unhealthy")

        status = "healthy" if healthy else "unhealthy"
        return HealthStatus(status=status, database=status, recent_visitors=recent)

    async def overview(self, site: str, days: Optional[int] = None) -> ReportData:
        """Everything the dashboard page shows, queried in parallel."""
        days = validate_days(days or self.default_days)
        (summary, timeline, countries, browsers, devices,
         operating_systems, referrers, top_pages) = await gather_or_cancel(
            self.summary(),
            self.timeline(days),
            self.countries(days),
            self.browsers(days),
            self.devices(days),
            self.operating_systems(days),
            self.referrers(days),
            self.top_pages(days),
        )
        return ReportData(
            site=site,
            days=days,
            summary=summary,
            timeline=timeline,
            countries=countries,
            browsers=browsers,
            devices=devices,
            operating_systems=operating_systems,
            referrers=referrers,
            top_pages=top_pages,
        )
