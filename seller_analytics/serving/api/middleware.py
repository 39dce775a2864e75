"""
API Middleware

Middleware for:
- Request logging with a request id bound to the engine's log context
- Per-client rate limiting of dashboard queries, which each scan the event log
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

# Health checks and metric scrapes never count against a client's budget
UNLIMITED_PATHS = ("/api/v1/health", "/metrics")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        # Engine log lines emitted while serving this request carry the id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                client=request.client.host if request.client else None,
            )

            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response


class SlidingWindowLimiter:
    """
    Request timestamps per client over a sliding window.

    Clients idle for a whole window are evicted, at most once per window,
    so the table only holds recently active clients.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def admit(self, client_id: str) -> Tuple[bool, int]:
        """Record a request; returns (allowed, remaining budget)"""
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

        hits = self._hits.setdefault(client_id, deque())
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

        if len(hits) >= self.max_requests:
            return False, 0
        hits.append(now)
        return True, self.max_requests - len(hits)

    def _sweep(self, now: float) -> None:
        stale = [
            client_id for client_id, hits in self._hits.items()
            if not hits or now - hits[-1] >= self.window_seconds
        ]
        for client_id in stale:
            del self._hits[client_id]
        self._last_sweep = now
        if stale:
            logger.debug("Rate limiter evicted idle clients", evicted=len(stale), active=len(self._hits))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter keyed by client address.

    Process-local; each worker enforces its own window.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        limiter: Optional[SlidingWindowLimiter] = None,
    ):
        super().__init__(app)
        self.limiter = limiter or SlidingWindowLimiter(max_requests, window_seconds)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(UNLIMITED_PATHS):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        allowed, remaining = self.limiter.admit(client_id)
        limit = str(self.limiter.max_requests)

        if not allowed:
            logger.warning("Rate limit exceeded", client=client_id, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={
                    "code": "rate_limited",
                    "message": "Rate limit exceeded",
                    "retryable": True,
                    "detail": {"window_seconds": self.limiter.window_seconds},
                },
                headers={
                    "Retry-After": str(int(self.limiter.window_seconds)),
                    "X-RateLimit-Limit": limit,
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = limit
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
