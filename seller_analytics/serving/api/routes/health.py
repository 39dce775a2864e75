"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from seller_analytics.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def check_store_health(request: Request) -> Dict[str, Any]:
    """Ping the event store behind the facade"""
    store = request.app.state.facade.store
    try:
        start = time.perf_counter()
        await store.ping()
        latency_ms = (time.perf_counter() - start) * 1000
        return {
            "status": "healthy",
            "backend": type(store).__name__,
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "backend": type(store).__name__,
            "error": str(e),
        }


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Event store connectivity
    - Aggregation cache (Redis when configured)
    """
    settings = get_settings()
    checks = {}
    overall_status = "healthy"

    checks["event_store"] = await check_store_health(request)
    if checks["event_store"]["status"] != "healthy":
        overall_status = "unhealthy"

    cache = request.app.state.facade.cache
    if cache is None:
        checks["cache"] = {"status": "disabled"}
    elif settings.cache.backend == "redis":
        try:
            from seller_analytics.serving.cache import get_redis
            await get_redis().ping()
            checks["cache"] = {"status": "healthy", "backend": "redis"}
        except Exception as e:
            checks["cache"] = {"status": "unhealthy", "backend": "redis", "error": str(e)}
            if overall_status == "healthy":
                overall_status = "degraded"
    else:
        checks["cache"] = {"status": "healthy", "backend": "memory", "inflight": cache.inflight}

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness check endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, str]:
    """
    Kubernetes readiness check endpoint.

    Returns 200 once the event store answers.
    """
    store_health = await check_store_health(request)
    if store_health["status"] != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "event_store_unavailable"}
    return {"status": "ready"}
