"""
Event Aggregation Module

Folds the events of one query window into period summaries:
- Per-bucket order counts and revenue
- Per-product funnel metrics (views, add-to-carts, sales, revenue, stock)
- Per-category revenue share
- Per-customer order activity
- Headline KPIs, order-status breakdown and best-selling hours and weekdays

A single forward pass validates and windows the raw records; the rollups are
then computed with polars group-bys over the collected rows.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, AsyncIterable, Dict, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import polars as pl
import structlog
from pydantic import BaseModel, Field, ValidationError

from seller_analytics.config import EngineSettings
from .bucketing import EPOCH, BucketPlan, to_epoch_micros
from .cancellation import CancellationToken
from .errors import QueryTooLargeError
from .models import (
    EVENT_ADAPTER,
    BucketSummary,
    CartEvent,
    CategorySummary,
    CustomerSummary,
    FrozenModel,
    HourSummary,
    KpiSummary,
    OrderEvent,
    OrderStatus,
    Product,
    ProductSummary,
    StatusCount,
    StockEvent,
    ViewEvent,
    WeekdaySummary,
)

logger = structlog.get_logger(__name__)

UNCATEGORIZED = "Uncategorized"
EVENT_TYPES = (OrderEvent, ViewEvent, CartEvent, StockEvent)
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Aggregation(FrozenModel):
    """Summaries of one event window; serialisable for the aggregation cache"""
    buckets: List[BucketSummary]
    products: List[ProductSummary]
    categories: List[CategorySummary]
    customers: List[CustomerSummary]
    kpis: KpiSummary = Field(default_factory=KpiSummary)
    order_statuses: List[StatusCount] = Field(default_factory=list)
    peak_hours: List[HourSummary] = Field(default_factory=list)
    top_days: List[WeekdaySummary] = Field(default_factory=list)
    dropped_events: int = 0
    out_of_window_events: int = 0
    scanned_events: int = 0

    @property
    def total_revenue(self) -> float:
        return sum(b.revenue for b in self.buckets)

    @property
    def total_orders(self) -> int:
        return sum(b.order_count for b in self.buckets)

    def products_by_id(self) -> Dict[str, ProductSummary]:
        return {p.product_id: p for p in self.products}

    def customers_by_id(self) -> Dict[str, CustomerSummary]:
        return {c.customer_id: c for c in self.customers}


class _WindowRows:
    """Column buffers for the in-window events of one scan"""

    def __init__(self):
        self.orders: Dict[str, list] = defaultdict(list)
        self.views: List[str] = []
        self.carts: Dict[str, list] = defaultdict(list)
        self.stock: Dict[str, list] = defaultdict(list)

    def frame(self, columns: Dict[str, list], schema: Dict[str, Any]) -> pl.DataFrame:
        return pl.DataFrame({name: columns.get(name, []) for name in schema}, schema=schema)


ORDER_SCHEMA = {
    "bucket": pl.Int64,
    "product_id": pl.Utf8,
    "customer_id": pl.Utf8,
    "status": pl.Utf8,
    "quantity": pl.Int64,
    "revenue": pl.Float64,
    "eligible": pl.Boolean,
    "counted": pl.Boolean,
    "cancelled": pl.Boolean,
    "ts": pl.Int64,
}
CART_SCHEMA = {"product_id": pl.Utf8, "quantity": pl.Int64}
STOCK_SCHEMA = {"product_id": pl.Utf8, "ts": pl.Int64, "seq": pl.Int64, "resulting_stock": pl.Int64}


class Aggregator:
    """
    Window aggregator over an event stream.

    Revenue accrues only from Shipped/Completed orders. Pending and
    Processing orders count toward bucket order counts when
    ``count_non_revenue_orders`` is set; Cancelled orders only when
    ``count_cancelled_orders`` is set. Stock levels are last-write-wins by
    event timestamp, so out-of-order pages are tolerated.

    Example:
        aggregator = Aggregator(settings.engine)
        aggregation = await aggregator.aggregate(plan, store.read(...), catalog)
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()

    def parse(self, raw: Any):
        """Typed event for a raw record, or None when it is malformed"""
        if isinstance(raw, EVENT_TYPES):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        try:
            return EVENT_ADAPTER.validate_python(raw)
        except ValidationError as e:
            logger.debug("Malformed event skipped", errors=e.error_count())
            return None

    def _counts_toward_orders(self, status: OrderStatus) -> bool:
        if status.counts_as_revenue:
            return True
        if status == OrderStatus.CANCELLED:
            return self.settings.count_cancelled_orders
        return self.settings.count_non_revenue_orders

    async def aggregate(
        self,
        plan: BucketPlan,
        stream: AsyncIterable[Sequence[Any]],
        catalog: Optional[Mapping[str, Product]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Aggregation:
        """
        Fold a paged event stream into window summaries.

        Args:
            plan: Resolved interval and bucket boundaries
            stream: Async iterable of event pages (raw dicts or event models)
            catalog: Product lookup for names and categories
            cancel: Optional cancellation token polled during the scan

        Returns:
            Aggregation with buckets, product, category and customer summaries

        Raises:
            QueryTooLargeError: More in-window events than ``max_rows``
            QueryCancelledError: Token cancelled or deadline passed
        """
        catalog = catalog or {}
        rows = _WindowRows()
        start, end = plan.start_micros, plan.end_micros
        check_every = self.settings.cancel_check_interval
        max_rows = self.settings.max_rows

        scanned = 0
        in_window = 0
        dropped = 0
        out_of_window = 0

        async for page in stream:
            if cancel is not None:
                cancel.raise_if_cancelled()

            for raw in page:
                scanned += 1
                if cancel is not None and scanned % check_every == 0:
                    cancel.raise_if_cancelled()

                event = self.parse(raw)
                if event is None:
                    dropped += 1
                    continue

                micros = to_epoch_micros(event.timestamp)
                if micros < start or micros >= end:
                    out_of_window += 1
                    continue

                in_window += 1
                if in_window > max_rows:
                    raise QueryTooLargeError(
                        f"Query scans more than {max_rows} events",
                        detail={"max_rows": max_rows, "interval_start": plan.start.isoformat(),
                                "interval_end": plan.end.isoformat()},
                    )

                bucket = plan.index_of(micros)
                if bucket < 0 or bucket >= plan.bucket_count:
                    dropped += 1
                    logger.warning("Event outside bucket range", bucket=bucket, buckets=plan.bucket_count)
                    continue

                self._collect(rows, event, bucket, micros, in_window)

        if cancel is not None:
            cancel.raise_if_cancelled()

        aggregation = self._rollup(plan, rows, catalog)
        aggregation = aggregation.model_copy(update={
            "dropped_events": dropped,
            "out_of_window_events": out_of_window,
            "scanned_events": scanned,
        })

        logger.info(
            "Aggregation complete",
            range=plan.keyword.value,
            granularity=plan.granularity.value,
            scanned=scanned,
            in_window=in_window,
            dropped=dropped,
            products=len(aggregation.products),
        )
        return aggregation

    def _collect(self, rows: _WindowRows, event, bucket: int, micros: int, seq: int) -> None:
        if isinstance(event, OrderEvent):
            eligible = event.status.counts_as_revenue
            orders = rows.orders
            orders["bucket"].append(bucket)
            orders["product_id"].append(event.product_id)
            orders["customer_id"].append(event.customer_id)
            orders["status"].append(event.status.value)
            orders["quantity"].append(event.quantity)
            orders["revenue"].append(event.amount if eligible else 0.0)
            orders["eligible"].append(eligible)
            orders["counted"].append(self._counts_toward_orders(event.status))
            orders["cancelled"].append(event.status == OrderStatus.CANCELLED)
            orders["ts"].append(micros)
        elif isinstance(event, ViewEvent):
            rows.views.append(event.product_id)
        elif isinstance(event, CartEvent):
            rows.carts["product_id"].append(event.product_id)
            rows.carts["quantity"].append(event.quantity)
        elif isinstance(event, StockEvent):
            rows.stock["product_id"].append(event.product_id)
            rows.stock["ts"].append(micros)
            rows.stock["seq"].append(seq)
            rows.stock["resulting_stock"].append(event.resulting_stock)

    # =========================================================================
    # ROLLUPS
    # =========================================================================

    def _rollup(
        self,
        plan: BucketPlan,
        rows: _WindowRows,
        catalog: Mapping[str, Product],
    ) -> Aggregation:
        orders_df = rows.frame(rows.orders, ORDER_SCHEMA)
        views_df = pl.DataFrame({"product_id": rows.views}, schema={"product_id": pl.Utf8})
        carts_df = rows.frame(rows.carts, CART_SCHEMA)
        stock_df = rows.frame(rows.stock, STOCK_SCHEMA)

        buckets = self._bucket_summaries(plan, orders_df)
        products = self._product_summaries(orders_df, views_df, carts_df, stock_df, catalog)
        categories = self._category_summaries(products)
        customers = self._customer_summaries(orders_df, ZoneInfo(plan.timezone))
        peak_hours, top_days = self._time_of_day(orders_df, plan.timezone)

        return Aggregation(
            buckets=buckets,
            products=products,
            categories=categories,
            customers=customers,
            kpis=self._kpis(orders_df, views_df),
            order_statuses=self._status_counts(orders_df),
            peak_hours=peak_hours,
            top_days=top_days,
        )

    def _bucket_summaries(self, plan: BucketPlan, orders_df: pl.DataFrame) -> List[BucketSummary]:
        per_bucket = (
            orders_df
            .filter(pl.col("counted"))
            .group_by("bucket")
            .agg([
                pl.len().alias("order_count"),
                pl.col("revenue").sum().alias("revenue"),
            ])
        )
        totals = {
            row["bucket"]: row for row in per_bucket.iter_rows(named=True)
        }

        summaries = []
        for index, (bucket_start, bucket_end, label) in enumerate(plan.buckets()):
            row = totals.get(index)
            summaries.append(BucketSummary(
                bucket_start=bucket_start,
                bucket_end=bucket_end,
                label=label,
                order_count=row["order_count"] if row else 0,
                revenue=float(row["revenue"]) if row else 0.0,
            ))
        return summaries

    def _product_summaries(
        self,
        orders_df: pl.DataFrame,
        views_df: pl.DataFrame,
        carts_df: pl.DataFrame,
        stock_df: pl.DataFrame,
        catalog: Mapping[str, Product],
    ) -> List[ProductSummary]:
        views = _to_mapping(
            views_df.group_by("product_id").agg(pl.len().alias("views")),
            "views",
        )
        carts = _to_mapping(
            carts_df.group_by("product_id").agg(pl.col("quantity").sum().alias("add_to_carts")),
            "add_to_carts",
        )
        sold = (
            orders_df
            .filter(pl.col("eligible"))
            .group_by("product_id")
            .agg([
                pl.col("quantity").sum().alias("sales"),
                pl.col("revenue").sum().alias("revenue"),
            ])
        )
        sales = _to_mapping(sold, "sales")
        revenue = _to_mapping(sold, "revenue")
        # Latest timestamp wins; arrival order breaks timestamp ties
        stock = _to_mapping(
            stock_df
            .sort(["ts", "seq"])
            .group_by("product_id", maintain_order=True)
            .agg(pl.col("resulting_stock").last()),
            "resulting_stock",
        )

        product_ids = set(views) | set(carts) | set(stock) | set(orders_df["product_id"].to_list())

        summaries = []
        for product_id in sorted(product_ids):
            product = catalog.get(product_id)
            product_views = int(views.get(product_id, 0))
            product_sales = int(sales.get(product_id, 0))
            summaries.append(ProductSummary(
                product_id=product_id,
                name=product.name if product else product_id,
                category=product.category if product else UNCATEGORIZED,
                views=product_views,
                add_to_carts=int(carts.get(product_id, 0)),
                sales=product_sales,
                revenue=float(revenue.get(product_id, 0.0)),
                conversion_rate=conversion_rate(product_sales, product_views),
                current_stock=stock.get(product_id),
            ))
        return summaries

    def _category_summaries(self, products: List[ProductSummary]) -> List[CategorySummary]:
        if not products:
            return []

        by_category = (
            pl.DataFrame(
                {
                    "category": [p.category for p in products],
                    "revenue": [p.revenue for p in products],
                },
                schema={"category": pl.Utf8, "revenue": pl.Float64},
            )
            .group_by("category")
            .agg(pl.col("revenue").sum())
            .sort(["revenue", "category"], descending=[True, False])
        )

        total = float(by_category["revenue"].sum())
        return [
            CategorySummary(
                category=row["category"],
                revenue=float(row["revenue"]),
                share=(float(row["revenue"]) / total) if total > 0 else 0.0,
            )
            for row in by_category.iter_rows(named=True)
        ]

    def _customer_summaries(self, orders_df: pl.DataFrame, tz: ZoneInfo) -> List[CustomerSummary]:
        per_customer = (
            orders_df
            .filter(~pl.col("cancelled"))
            .group_by("customer_id")
            .agg([
                pl.len().alias("order_count"),
                pl.col("revenue").sum().alias("revenue"),
                pl.col("ts").min().alias("first_ts"),
                pl.col("ts").max().alias("last_ts"),
            ])
            .sort("customer_id")
        )
        return [
            CustomerSummary(
                customer_id=row["customer_id"],
                order_count=row["order_count"],
                revenue=float(row["revenue"]),
                first_order_at=from_epoch_micros(row["first_ts"], tz),
                last_order_at=from_epoch_micros(row["last_ts"], tz),
            )
            for row in per_customer.iter_rows(named=True)
        ]


    def _kpis(self, orders_df: pl.DataFrame, views_df: pl.DataFrame) -> KpiSummary:
        eligible = orders_df.filter(pl.col("eligible"))
        total_revenue = float(eligible["revenue"].sum())
        revenue_orders = eligible.height
        total_sales = int(eligible["quantity"].sum())
        total_views = views_df.height

        return KpiSummary(
            total_revenue=total_revenue,
            total_orders=orders_df.filter(pl.col("counted")).height,
            revenue_orders=revenue_orders,
            # Pending orders would dilute the average; only paid orders count
            average_order_value=total_revenue / revenue_orders if revenue_orders else 0.0,
            total_views=total_views,
            total_sales=total_sales,
            conversion_rate=conversion_rate(total_sales, total_views),
        )

    def _status_counts(self, orders_df: pl.DataFrame) -> List[StatusCount]:
        """Every in-window order by status, in lifecycle order"""
        per_status = orders_df.group_by("status").agg(pl.len().alias("order_count"))
        counts = dict(zip(per_status["status"].to_list(), per_status["order_count"].to_list()))
        total = sum(counts.values())

        return [
            StatusCount(status=status, order_count=counts[status.value], share=counts[status.value] / total)
            for status in OrderStatus
            if status.value in counts
        ]

    def _time_of_day(
        self,
        orders_df: pl.DataFrame,
        tz_name: str,
    ) -> Tuple[List[HourSummary], List[WeekdaySummary]]:
        """Best-selling local hours and weekdays, busiest first"""
        counted = orders_df.filter(pl.col("counted"))
        total = counted.height
        if total == 0:
            return [], []

        local = (
            counted
            .with_columns(
                pl.from_epoch("ts", time_unit="us")
                .dt.replace_time_zone("UTC")
                .dt.convert_time_zone(tz_name)
                .alias("local_ts")
            )
            .with_columns([
                pl.col("local_ts").dt.hour().cast(pl.Int64).alias("hour"),
                pl.col("local_ts").dt.weekday().cast(pl.Int64).alias("weekday"),
            ])
        )

        hours = [
            HourSummary(
                hour=row["hour"],
                label=f"{row['hour']:02d}:00",
                order_count=row["order_count"],
                revenue=float(row["revenue"]),
                share=row["order_count"] / total,
            )
            for row in _ranked_by(local, "hour").iter_rows(named=True)
        ]
        days = [
            WeekdaySummary(
                weekday=row["weekday"],
                label=WEEKDAYS[row["weekday"] - 1],
                order_count=row["order_count"],
                revenue=float(row["revenue"]),
                share=row["order_count"] / total,
            )
            for row in _ranked_by(local, "weekday").iter_rows(named=True)
        ]
        return hours, days


def _ranked_by(df: pl.DataFrame, key: str) -> pl.DataFrame:
    return (
        df
        .group_by(key)
        .agg([
            pl.len().alias("order_count"),
            pl.col("revenue").sum().alias("revenue"),
        ])
        .sort(["order_count", "revenue", key], descending=[True, True, False])
    )


def conversion_rate(sales: int, views: int) -> float:
    """Sales per view; zero when the product has no views"""
    if views <= 0:
        return 0.0
    return sales / views


def from_epoch_micros(micros: int, tz: ZoneInfo) -> datetime:
    return (EPOCH + timedelta(microseconds=micros)).astimezone(tz)


def _to_mapping(df: pl.DataFrame, column: str) -> Dict[str, Any]:
    return dict(zip(df["product_id"].to_list(), df[column].to_list()))
