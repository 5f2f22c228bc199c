"""
Dashboard page for visitor analytics.

Renders one Jinja2 page from `ReportingHandler.overview`.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..config import AnalyticsConfig
from ..errors import ExternalDependencyError, ValidationError
from ..reporting import ReportingHandler

logger = logging.getLogger(__name__)


def _format_number(value) -> str:
    """Format number with thousands separator."""
    try:
        return f"{int(value):,}"
    except (TypeError, ValueError):
        return "0"


def _signed_percent(value) -> str:
    """Format growth as +12.5% / -3.0%."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return "0%"
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.1f}%"


def create_dashboard_router(
    config: AnalyticsConfig,
    reporting: ReportingHandler,
    tracking_script: str = "",
) -> APIRouter:
    """Create dashboard router with Jinja2 templates.

    Args:
        config: Analytics configuration
        reporting: Handler that builds the report data
        tracking_script: Snippet embedded in the page so it tracks itself
    """
    router = APIRouter(tags=["dashboard"])

    template_dir = Path(__file__).parent.parent / "templates"
    templates = Jinja2Templates(directory=str(template_dir))
    templates.env.filters["format_number"] = _format_number
    templates.env.filters["signed_percent"] = _signed_percent

    @router.get("/dashboard", response_class=HTMLResponse)
    async def dashboard(request: Request, days: Optional[int] = Query(None)):
        """Render the analytics dashboard."""
        context = {
            "request": request,
            "site_name": config.site_name,
            "tracking_script": tracking_script,
            "report": None,
            "error": None,
        }
        status_code = 200
        try:
            context["report"] = await reporting.overview(config.site_name, days or config.timeline_days)
        except ValidationError as e:
            context["error"] = "; ".join(e.errors)
            status_code = 400
        except ExternalDependencyError as e:
            logger.error(f"Dashboard data unavailable: {e}")
            context["error"] = e.public_message
            status_code = 500

        return templates.TemplateResponse(request, "dashboard.html", context, status_code=status_code)

    return router
