"""
API Module
"""
from .middleware import RequestLoggingMiddleware, RateLimitMiddleware, SlidingWindowLimiter

__all__ = [
    "RequestLoggingMiddleware",
    "RateLimitMiddleware",
    "SlidingWindowLimiter",
]
