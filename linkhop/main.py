"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from linkhop.api import redirect_router
from linkhop.collectors import AnalyticsCollector
from linkhop.core.config import Settings, get_settings
from linkhop.core.database import close_db, init_db
from linkhop.core.observability import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    setup_observability,
)
from linkhop.services import GeoResolver, LinkStore, RedirectCache, ThreatChecker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting Linkhop", version=settings.app_version)

    await init_db()

    geo = GeoResolver(settings.geoip_database_path)
    link_store = LinkStore()
    app.state.geo = geo
    app.state.link_store = link_store
    app.state.link_cache = RedirectCache(settings.link_cache_size)

    threat_checker = ThreatChecker(
        refresh_interval=settings.threat_refresh_interval,
        fetch_timeout=settings.threat_fetch_timeout,
    )
    app.state.threat_checker = threat_checker
    if settings.threat_checker_enabled:
        await threat_checker.start()
    else:
        logger.info("Threat checker disabled")

    collector = AnalyticsCollector(
        sink=link_store,
        geo=geo,
        threat_checker=threat_checker,
        buffer_size=settings.analytics_buffer_size,
        flush_interval=settings.analytics_flush_interval,
        filter_automated=settings.analytics_filter_automated,
    )
    app.state.collector = collector
    await collector.start()

    yield

    # Shutdown
    logger.info("Shutting down Linkhop")

    # Final flush before anything it depends on goes away
    await collector.shutdown()
    await threat_checker.stop()
    geo.close()

    await close_db()
    logger.info("Database connections closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application.

    Long-lived services are created by the lifespan handler and stored on
    ``app.state`` (``link_store``, ``link_cache``, ``collector``,
    ``threat_checker``, ``geo``).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Short link redirects with click analytics",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Set up observability (logging, tracing, metrics, error tracking)
    setup_observability(app)

    # Request middleware (order matters: RequestID first, then logging)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        collector: AnalyticsCollector | None = getattr(app.state, "collector", None)
        running = collector is not None and collector.is_running
        return {
            "status": "healthy" if running else "degraded",
            "service": "linkhop",
            "collector_running": running,
        }

    @app.get("/stats")
    async def service_stats() -> dict:
        """Get service statistics."""
        collector = getattr(app.state, "collector", None)
        threat_checker = getattr(app.state, "threat_checker", None)
        link_cache = getattr(app.state, "link_cache", None)
        return {
            "service": "linkhop",
            "version": settings.app_version,
            "collector": collector.stats if collector else None,
            "threat_checker": threat_checker.stats if threat_checker else None,
            "link_cache": link_cache.stats if link_cache else None,
        }

    # Catch-all slug route goes last so it cannot shadow the endpoints above
    app.include_router(redirect_router)

    return app


app = create_app()
