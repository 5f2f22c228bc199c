"""
HTTP routes for visitor analytics.

The JSON API and the Jinja2 dashboard page are separate routers so a host
app can mount either one.
"""

from .api import create_api_router
from .dashboard import create_dashboard_router

__all__ = ["create_api_router", "create_dashboard_router"]
