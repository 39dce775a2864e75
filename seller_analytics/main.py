"""
FastAPI Production Application

Main entry point for the Seller Analytics API.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from seller_analytics.config import Settings, get_settings
from seller_analytics.config.logging import configure_logging
from seller_analytics.engine import AnalyticsError, EventStore, QueryFacade
from seller_analytics.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
)
from seller_analytics.serving.api.routes import dashboard_router, health_router
from seller_analytics.serving.cache import AggregationCache, close_redis, create_cache
from seller_analytics.store import InMemoryEventStore, SqlEventStore, create_schema
from seller_analytics.store.connection import close_database, init_database

logger = structlog.get_logger(__name__)


async def open_store(settings: Settings) -> EventStore:
    """SQL event store, or an empty in-memory store when the database is unreachable"""
    try:
        engine = await init_database()
        await create_schema(engine)
        logger.info("SQL event store ready")
        return SqlEventStore.from_engine(engine)
    except Exception as e:
        if settings.is_production:
            raise
        logger.warning(f"Database init failed, using in-memory event store: {e}")
        return InMemoryEventStore()


async def open_cache(settings: Settings) -> Optional[AggregationCache]:
    try:
        return await create_cache(settings.cache)
    except Exception as e:
        logger.warning(f"Redis init failed, using in-process cache: {e}")
        return AggregationCache(settings.cache)


async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    """Render engine errors with their stable code and status"""
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(
    store: Optional[EventStore] = None,
    cache: Optional[AggregationCache] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store: Event store to serve; opened from settings when omitted
        cache: Aggregation cache; created from settings when no store is given
        settings: Application settings

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        configure_logging(settings.monitoring, service=settings.app_name, environment=settings.app_env)
        logger.info("Starting Seller Analytics API", environment=settings.app_env)

        owns_services = store is None
        if owns_services:
            event_store = await open_store(settings)
            aggregation_cache = await open_cache(settings)
        else:
            event_store, aggregation_cache = store, cache

        app.state.facade = QueryFacade(event_store, settings.engine, cache=aggregation_cache)

        yield

        logger.info("Shutting down...")
        if owns_services:
            await close_database()
            await close_redis()

    app = FastAPI(
        title="Seller Analytics API",
        description="Time-bucketed seller dashboard analytics over an append-only event log",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(AnalyticsError, analytics_error_handler)

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )

    # API routes
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["Dashboard"])

    if settings.monitoring.enable_metrics:
        @app.get("/metrics", include_in_schema=False)
        async def metrics() -> PlainTextResponse:
            """Prometheus scrape endpoint"""
            return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=get_settings().api_host, port=get_settings().api_port)
