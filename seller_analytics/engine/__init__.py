"""
Seller Analytics Core
Analytics Engine
"""
from .aggregator import Aggregation, Aggregator
from .alerts import AlertEvaluator, thresholds_from_catalog
from .bucketing import BucketPlan, previous_plan, resolve
from .cancellation import CancellationToken
from .errors import (
    AnalyticsError,
    InvalidRangeError,
    InvalidThresholdError,
    QueryCancelledError,
    QueryTooLargeError,
    StoreUnavailableError,
    UnknownSortFieldError,
)
from .eventstore import EventStore
from .facade import QueryFacade
from .models import DashboardQuery, DashboardResult
from .ranking import Ranker
from .segments import SegmentClassifier

__all__ = [
    "Aggregation",
    "Aggregator",
    "AlertEvaluator",
    "thresholds_from_catalog",
    "BucketPlan",
    "previous_plan",
    "resolve",
    "CancellationToken",
    "AnalyticsError",
    "InvalidRangeError",
    "InvalidThresholdError",
    "QueryCancelledError",
    "QueryTooLargeError",
    "StoreUnavailableError",
    "UnknownSortFieldError",
    "EventStore",
    "QueryFacade",
    "DashboardQuery",
    "DashboardResult",
    "Ranker",
    "SegmentClassifier",
]
