"""
Standalone FastAPI application serving the analytics API and dashboard.

    uvicorn visitor_analytics.app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import Analytics, __version__
from .config import AnalyticsConfig
from .errors import ExternalDependencyError, RateLimitExceeded, ValidationError
from .security import SecurityHeadersMiddleware

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[AnalyticsConfig] = None,
    analytics: Optional[Analytics] = None,
    ensure_schema: bool = False,
) -> FastAPI:
    """Build the application.

    Args:
        config: Configuration; read from the environment when omitted
        analytics: Pre-wired instance (tests pass one with a fake store)
        ensure_schema: Create the visitors table on startup
    """
    if analytics is None:
        analytics = Analytics(config or AnalyticsConfig.from_env())
    config = analytics.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting visitor analytics for {config.site_name}")
        if ensure_schema:
            await analytics.store.ensure_schema()
        yield
        analytics.geo.close()
        logger.info("Visitor analytics shut down")

    app = FastAPI(title="Visitor Analytics", version=__version__, lifespan=lifespan)
    app.state.analytics = analytics

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation failed", "details": exc.errors},
        )

    @app.exception_handler(ExternalDependencyError)
    async def external_error_handler(request: Request, exc: ExternalDependencyError):
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": exc.public_message},
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded on {request.url.path}")
        return JSONResponse(
            status_code=429,
            content={"success": False, "error": exc.message},
        )

    if config.cors_origins == ["*"] and config.is_production:
        logger.warning("CORS allows all origins in production")

    app.add_middleware(SecurityHeadersMiddleware, production=config.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key"],
    )

    app.include_router(analytics.api_router, prefix=analytics.api_prefix)
    app.include_router(analytics.dashboard_router)
    return app
