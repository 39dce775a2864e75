"""
Engine Error Taxonomy

Every failure the engine surfaces carries a stable machine-readable code so a
caller can decide whether to retry, reduce the range, or show a fixed message.
"""

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """
    Root of the engine error hierarchy.

    Args:
        message: Human-readable description
        detail: Extra context (JSON-serialisable)
        cause: Original exception that triggered this error
    """

    code: str = "analytics_error"
    http_status: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail or {}
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for logs and HTTP responses"""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "detail": self.detail,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidRangeError(AnalyticsError):
    """Range start >= end, unknown range keyword or unknown timezone"""
    code = "invalid_range"
    http_status = 400


class UnknownSortFieldError(AnalyticsError):
    """Sort field or direction not supported by the ranker"""
    code = "unknown_sort_field"
    http_status = 400


class InvalidThresholdError(AnalyticsError):
    """Alert threshold configuration that cannot be evaluated"""
    code = "invalid_threshold"
    http_status = 400


class QueryTooLargeError(AnalyticsError):
    """Scan would exceed the configured row ceiling"""
    code = "query_too_large"
    http_status = 413


class QueryCancelledError(AnalyticsError):
    """Query aborted by a cancellation signal or deadline"""
    code = "cancelled"
    http_status = 499
    retryable = True


class StoreUnavailableError(AnalyticsError):
    """Event store read failed"""
    code = "store_unavailable"
    http_status = 503
    retryable = True

