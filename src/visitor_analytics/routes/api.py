"""
JSON API routes: tracking ingest, consent, data deletion and reports.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..config import AnalyticsConfig
from ..core.client import VisitorStore
from ..core.models import (
    AnalyticsSummary,
    CountStat,
    GeoPoint,
    HealthStatus,
    PrivacyStats,
    TimelinePoint,
)
from ..errors import ExternalDependencyError, RateLimitExceeded
from ..ingest import IngestHandler, IngestStatus
from ..privacy import ConsentState, anonymize_ip, retention_cutoff, retention_window
from ..reporting import ReportingHandler
from ..security import (
    SENSITIVE_RATE_LIMIT_MESSAGE,
    RateLimiter,
    client_ip,
    detect_bot,
    verify_api_key,
)

logger = logging.getLogger(__name__)


def create_api_router(
    config: AnalyticsConfig,
    store: VisitorStore,
    consent: ConsentState,
    ingest: IngestHandler,
    reporting: ReportingHandler,
) -> APIRouter:
    """Create the JSON API router.

    Args:
        config: Analytics configuration
        store: Store used directly by the admin endpoints
        consent: Shared consent state
        ingest: Handler behind POST /track
        reporting: Handler behind the report endpoints
    """
    limiter = RateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_sec=config.rate_limit_window_seconds,
    )
    sensitive_limiter = RateLimiter(
        max_requests=config.sensitive_rate_limit_max_requests,
        window_sec=config.rate_limit_window_seconds,
    )

    async def rate_limit(request: Request) -> None:
        if not limiter.hit(client_ip(request)):
            raise RateLimitExceeded()

    async def sensitive_rate_limit(request: Request) -> None:
        if not sensitive_limiter.hit(client_ip(request)):
            raise RateLimitExceeded(SENSITIVE_RATE_LIMIT_MESSAGE)

    async def require_api_key(
        x_api_key: Optional[str] = Header(None),
        api_key: Optional[str] = Query(None),
    ) -> str:
        provided = x_api_key or api_key
        if not provided:
            raise HTTPException(status_code=401, detail="API key is required")
        if not verify_api_key(provided, config.api_key):
            raise HTTPException(status_code=401, detail="Invalid API key")
        return provided

    router = APIRouter(tags=["analytics"], dependencies=[Depends(rate_limit)])

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    @router.post("/track")
    async def track(request: Request):
        """Validate, enrich and store one visit."""
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Validation failed",
                    "details": ["Request body must be valid JSON"],
                },
            )

        ip = client_ip(request)
        user_agent = request.headers.get("user-agent")
        bot = detect_bot(user_agent)
        if bot:
            logger.info(f"Bot detected ({bot}): {user_agent}")

        result = await ingest.ingest(payload, ip, user_agent)

        if result.status == IngestStatus.ACCEPTED:
            return {"success": True, "id": result.id}
        if result.status == IngestStatus.SKIPPED:
            return {"success": True, "message": result.message}
        if result.status == IngestStatus.REJECTED:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Validation failed", "details": result.errors},
            )
        if result.status == IngestStatus.BLOCKED:
            return JSONResponse(status_code=403, content={"success": False, "error": result.message})
        return JSONResponse(status_code=500, content={"success": False, "error": result.message})

    @router.post("/consent", dependencies=[Depends(sensitive_rate_limit)])
    async def set_consent(request: Request):
        """Record the tracking consent decision."""
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or "consent" not in body:
            return JSONResponse(status_code=400, content={"success": False, "error": "Consent value required"})
        if not isinstance(body["consent"], bool):
            return JSONResponse(status_code=400, content={"success": False, "error": "Consent value must be a boolean"})

        options = body.get("options") if isinstance(body.get("options"), dict) else {}
        record = consent.set_consent(body["consent"], options)
        logger.info(f"Consent set to {record.granted}")
        return {"success": True, "consent": record.granted, "timestamp": record.timestamp.isoformat()}

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    @router.delete("/visitors", dependencies=[Depends(sensitive_rate_limit)])
    async def delete_visitor_data(
        request: Request,
        ip: Optional[str] = Query(None, min_length=2),
        _key: str = Depends(require_api_key),
    ):
        """Delete all stored visits for an address (matched after anonymization).

        Defaults to the caller's own address.
        """
        anonymized = anonymize_ip(ip or client_ip(request))
        try:
            deleted = await store.delete_by_ip(anonymized)
        except ExternalDependencyError as e:
            logger.error(f"Error deleting user data for {anonymized}: {e}", exc_info=True)
            raise ExternalDependencyError("delete visitor data", public_message="Failed to delete visitor data") from e
        logger.info(f"Deleted {deleted} visits for {anonymized}")
        return {"success": True, "deleted": deleted}

    @router.post("/retention/purge", dependencies=[Depends(sensitive_rate_limit)])
    async def purge_expired(_key: str = Depends(require_api_key)):
        """Delete visits older than the retention window."""
        cutoff = retention_cutoff(window=retention_window(config.retention_days))
        try:
            deleted = await store.purge_older_than(cutoff)
        except ExternalDependencyError as e:
            logger.error(f"Error purging expired visits: {e}", exc_info=True)
            raise ExternalDependencyError("retention purge", public_message="Failed to purge expired data") from e
        logger.info(f"Purged {deleted} visits older than {cutoff.isoformat()}")
        return {"success": True, "deleted": deleted, "cutoff": cutoff.isoformat()}

    @router.get("/visitors-detailed")
    async def visitors_detailed(
        limit: int = Query(50),
        _key: str = Depends(require_api_key),
    ) -> List[Dict[str, Any]]:
        return await reporting.recent_visitors(limit)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    @router.get("/analytics", response_model=AnalyticsSummary)
    async def analytics_summary():
        return await reporting.summary()

    @router.get("/countries", response_model=List[CountStat])
    async def countries(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.countries(days, limit)

    @router.get("/stats", response_model=List[CountStat])
    async def browser_stats(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.browsers(days, limit)

    @router.get("/devices", response_model=List[CountStat])
    async def device_stats(days: Optional[int] = None):
        return await reporting.devices(days)

    @router.get("/os-stats", response_model=List[CountStat])
    async def os_stats(days: Optional[int] = None):
        return await reporting.operating_systems(days)

    @router.get("/languages", response_model=List[CountStat])
    async def languages(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.languages(days, limit)

    @router.get("/screen-resolutions", response_model=List[CountStat])
    async def screen_resolutions(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.screen_resolutions(days, limit)

    @router.get("/browser-versions", response_model=List[CountStat])
    async def browser_versions(days: Optional[int] = None, limit: int = Query(20)):
        return await reporting.browser_versions(days, limit)

    @router.get("/referrers", response_model=List[CountStat])
    async def referrers(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.referrers(days, limit)

    @router.get("/top-pages", response_model=List[CountStat])
    async def top_pages(days: Optional[int] = None, limit: int = Query(10)):
        return await reporting.top_pages(days, limit)

    @router.get("/regions/{country}", response_model=List[CountStat])
    async def regions(country: str, days: Optional[int] = None):
        return await reporting.regions(country, days)

    @router.get("/cities/{country}", response_model=List[CountStat])
    async def cities(country: str, days: Optional[int] = None, limit: int = Query(20)):
        return await reporting.cities(country, days, limit)

    @router.get("/timeline", response_model=List[TimelinePoint])
    async def timeline(days: Optional[int] = None):
        return await reporting.timeline(days)

    @router.get("/geo-heatmap", response_model=List[GeoPoint])
    async def geo_heatmap(limit: int = Query(1000)):
        return await reporting.geo_points(limit)

    @router.get("/privacy-stats", response_model=PrivacyStats)
    async def privacy_stats():
        return await reporting.privacy_stats()

    @router.get("/health")
    async def health():
        status: HealthStatus = await reporting.health()
        code = 200 if status.status == "healthy" else 500
        return JSONResponse(status_code=code, content=status.model_dump(mode="json"))

    return router
