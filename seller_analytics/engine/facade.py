"""
Dashboard Query Facade

Single entry point for dashboard queries. Composes:
- Range resolution (failures short-circuit the query)
- Aggregation over the event store, optionally through the aggregation cache
- Ranking, low-stock alerts, customer segments and period comparison
- Headline KPIs with growth against the previous period

Post-processing failures are component-local: an unsortable product list
keeps its id order, other failed sections are left empty, and a diagnostic
is attached to the result.
"""

import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from prometheus_client import Counter, Histogram

from seller_analytics.config import EngineSettings
from .aggregator import Aggregation, Aggregator
from .alerts import AlertEvaluator, thresholds_from_catalog
from .bucketing import BucketPlan, previous_plan, resolve
from .cancellation import CancellationToken
from .errors import AnalyticsError, QueryCancelledError, StoreUnavailableError
from .eventstore import EventStore, iter_pages, load_catalog
from .models import (
    AlertThreshold,
    ComponentDiagnostic,
    DashboardQuery,
    DashboardResult,
    Diagnostics,
    KpiSummary,
    PeriodComparison,
    Product,
    RangeKeyword,
)
from .ranking import Ranker
from .segments import SegmentClassifier

logger = structlog.get_logger(__name__)

QUERIES_TOTAL = Counter(
    "dashboard_queries_total",
    "Dashboard queries by range keyword and outcome",
    ["range", "status"],
)
QUERY_DURATION = Histogram(
    "dashboard_query_duration_seconds",
    "Dashboard query latency",
    ["range"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
DROPPED_EVENTS = Counter(
    "dashboard_dropped_events_total",
    "Malformed events skipped during aggregation",
)
COMPONENT_FAILURES = Counter(
    "dashboard_component_failures_total",
    "Post-processing failures reported as diagnostics",
    ["component", "code"],
)

# Failures of the previous-window scan that must abort the whole query
FATAL_ERRORS = (QueryCancelledError, StoreUnavailableError)


def growth(current: float, previous: float) -> Optional[float]:
    """Percentage change, or None when there is no previous value"""
    if previous <= 0:
        return None
    return (current - previous) / previous * 100


def kpi_growth(current: KpiSummary, previous: KpiSummary) -> KpiSummary:
    """Current KPIs with growth against the previous window"""
    return current.model_copy(update={
        "revenue_growth": growth(current.total_revenue, previous.total_revenue),
        "orders_growth": growth(current.total_orders, previous.total_orders),
        "average_order_value_growth": growth(current.average_order_value, previous.average_order_value),
        "conversion_rate_growth": growth(current.conversion_rate, previous.conversion_rate),
    })


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _range_label(keyword: str) -> str:
    # Bounded label set for metrics
    known = {k.value for k in RangeKeyword}
    return keyword if keyword in known else "unknown"


class QueryFacade:
    """
    Dashboard query orchestrator.

    Example:
        facade = QueryFacade(store, settings.engine, cache=cache)
        result = await facade.run(DashboardQuery(range_keyword="Week", sort_field="revenue"))
    """

    def __init__(
        self,
        store: EventStore,
        settings: Optional[EngineSettings] = None,
        cache: Optional[Any] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or EngineSettings()
        self.cache = cache
        self.clock = clock

        self.aggregator = Aggregator(self.settings)
        self.ranker = Ranker()
        self.alerts = AlertEvaluator(self.settings)
        self.segments = SegmentClassifier(settings=self.settings)

    async def run(
        self,
        query: DashboardQuery,
        cancel: Optional[CancellationToken] = None,
    ) -> DashboardResult:
        """
        Execute a dashboard query.

        Args:
            query: Range, sort, alert and comparison options
            cancel: Token polled during scans; defaults to the configured deadline

        Returns:
            DashboardResult with every requested section

        Raises:
            InvalidRangeError: Unknown keyword, bad custom range or timezone
            QueryTooLargeError: Row ceiling exceeded
            QueryCancelledError: Cancelled or deadline passed
            StoreUnavailableError: Event store failure
        """
        range_label = _range_label(query.range_keyword)
        started = time.perf_counter()
        try:
            result = await self._run(query, cancel)
        except AnalyticsError as e:
            QUERIES_TOTAL.labels(range=range_label, status=e.code).inc()
            logger.warning(
                "Dashboard query failed",
                range=range_label,
                code=e.code,
                error=e.message,
            )
            raise

        duration = time.perf_counter() - started
        QUERIES_TOTAL.labels(range=range_label, status="ok").inc()
        QUERY_DURATION.labels(range=range_label).observe(duration)
        logger.info(
            "Dashboard query complete",
            range=range_label,
            granularity=result.granularity.value,
            buckets=len(result.buckets),
            products=len(result.product_summaries),
            errors=len(result.diagnostics.errors),
            duration_ms=round(duration * 1000, 2),
        )
        return result

    async def _run(self, query: DashboardQuery, cancel: Optional[CancellationToken]) -> DashboardResult:
        tz_name = query.timezone or self.settings.default_timezone
        reference = query.reference_instant or self.clock()
        plan = resolve(
            query.range_keyword,
            reference,
            tz_name,
            custom_range=query.custom_range,
            granularity=query.granularity,
        )

        if cancel is None:
            cancel = CancellationToken.with_timeout(self.settings.query_timeout_seconds)

        catalog = await load_catalog(self.store, cancel)
        current = await self.aggregate(plan, reference, catalog, cancel)

        errors: List[ComponentDiagnostic] = []

        # Ranking; on failure the summaries keep the aggregator's id order
        products = current.products
        if query.sort_field:
            try:
                products = self.ranker.sort(products, query.sort_field, query.sort_direction)
            except Exception as e:
                errors.append(self._diagnostic("ranker", e))
        truncated = query.limit is not None and len(products) > query.limit
        if truncated:
            products = products[:query.limit]

        # Alerts
        alerts = []
        thresholds = self._alert_thresholds(query, catalog)
        if thresholds is not None:
            try:
                alerts = self.alerts.evaluate(current.products, thresholds)
            except Exception as e:
                errors.append(self._diagnostic("alerts", e))

        # Previous window, shared by segmentation and comparison
        previous: Optional[Aggregation] = None
        prior: Optional[BucketPlan] = None
        if query.include_segments or query.compare_with_previous:
            try:
                prior = previous_plan(plan)
                previous = await self.aggregate(prior, reference, catalog, cancel)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                if query.include_segments:
                    errors.append(self._diagnostic("segments", e))
                if query.compare_with_previous:
                    errors.append(self._diagnostic("comparison", e))

        segments = []
        if query.include_segments and previous is not None:
            try:
                segments = self.segments.summarize(current.customers, previous.customers)
            except Exception as e:
                errors.append(self._diagnostic("segments", e))

        comparison = None
        kpis = current.kpis
        if query.compare_with_previous and previous is not None:
            comparison = PeriodComparison(
                previous_start=prior.start,
                previous_end=prior.end,
                previous_revenue=previous.total_revenue,
                previous_order_count=previous.total_orders,
                revenue_growth=growth(current.total_revenue, previous.total_revenue),
                orders_growth=growth(current.total_orders, previous.total_orders),
            )
            kpis = kpi_growth(current.kpis, previous.kpis)

        return DashboardResult(
            range_keyword=plan.keyword,
            timezone=tz_name,
            interval_start=plan.start,
            interval_end=plan.end,
            granularity=plan.granularity,
            buckets=current.buckets,
            product_summaries=products,
            category_summaries=current.categories,
            kpis=kpis,
            order_statuses=current.order_statuses,
            peak_hours=current.peak_hours,
            top_days=current.top_days,
            customer_segments=segments,
            alerts=alerts,
            comparison=comparison,
            diagnostics=Diagnostics(
                dropped_events=current.dropped_events,
                out_of_window_events=current.out_of_window_events,
                scanned_events=current.scanned_events,
                truncated=truncated,
                errors=errors,
            ),
        )

    async def aggregate(
        self,
        plan: BucketPlan,
        reference: datetime,
        catalog: Dict[str, Product],
        cancel: CancellationToken,
    ) -> Aggregation:
        """Aggregation for a plan, served from the cache when one is configured"""

        async def compute() -> Aggregation:
            pages = iter_pages(self.store, plan.start, plan.end, self.settings.page_size, cancel)
            async with aclosing(pages):
                aggregation = await self.aggregator.aggregate(plan, pages, catalog, cancel)
            if aggregation.dropped_events:
                DROPPED_EVENTS.inc(aggregation.dropped_events)
            return aggregation

        if self.cache is None:
            return await compute()
        return await self.cache.get_or_compute(self.cache.key_for(plan, reference), compute)

    def _alert_thresholds(
        self,
        query: DashboardQuery,
        catalog: Dict[str, Product],
    ) -> Optional[Dict[str, AlertThreshold]]:
        """Explicit thresholds, layered over the catalog's when requested"""
        if not query.catalog_alerts:
            return query.alert_thresholds
        thresholds = thresholds_from_catalog(catalog.values())
        thresholds.update(query.alert_thresholds or {})
        return thresholds

    def _diagnostic(self, component: str, error: Exception) -> ComponentDiagnostic:
        code = getattr(error, "code", "internal_error")
        message = getattr(error, "message", str(error))
        COMPONENT_FAILURES.labels(component=component, code=code).inc()
        logger.error(
            "Dashboard component failed",
            component=component,
            code=code,
            error=message,
            error_type=type(error).__name__,
        )
        return ComponentDiagnostic(component=component, code=code, message=message)
