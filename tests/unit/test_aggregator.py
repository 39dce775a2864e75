"""
Unit Tests - Aggregation
"""
from datetime import datetime, timedelta, timezone

import pytest

from seller_analytics.config import EngineSettings
from seller_analytics.engine.aggregator import UNCATEGORIZED, Aggregator, conversion_rate
from seller_analytics.engine.bucketing import resolve
from seller_analytics.engine.cancellation import CancellationToken
from seller_analytics.engine.errors import QueryCancelledError, QueryTooLargeError

UTC = timezone.utc
FRIDAY = datetime(2024, 3, 15, 10, 0, tzinfo=UTC)


async def paged(*pages):
    for page in pages:
        yield list(page)


@pytest.fixture
def week(reference):
    return resolve("Week", reference, "UTC")


@pytest.fixture
def catalog_map(catalog):
    return {p.id: p for p in catalog}


class TestBuckets:
    """Tests for per-bucket rollups"""

    @pytest.mark.asyncio
    async def test_five_friday_orders(self, week, events, engine_settings):
        orders = [events.order("sku-1", FRIDAY + timedelta(minutes=i)) for i in range(5)]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders))

        by_label = {b.label: b for b in result.buckets}
        assert by_label["Fri"].order_count == 5
        assert by_label["Fri"].revenue == pytest.approx(500.0)
        for label, bucket in by_label.items():
            if label != "Fri":
                assert bucket.order_count == 0
                assert bucket.revenue == 0.0

    @pytest.mark.asyncio
    async def test_every_bucket_is_reported(self, week, engine_settings):
        result = await Aggregator(engine_settings).aggregate(week, paged())

        assert [b.label for b in result.buckets] == list(week.labels)
        assert result.products == []
        assert result.categories == []

    @pytest.mark.asyncio
    async def test_order_status_counting(self, week, events, engine_settings):
        orders = [
            events.order("sku-1", FRIDAY, amount=100, status="Completed"),
            events.order("sku-1", FRIDAY, amount=50, status="Shipped"),
            events.order("sku-1", FRIDAY, amount=70, status="Pending"),
            events.order("sku-1", FRIDAY, amount=30, status="Processing"),
            events.order("sku-1", FRIDAY, amount=90, status="Cancelled"),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders))

        friday = result.buckets[4]
        assert friday.order_count == 4
        assert friday.revenue == pytest.approx(150.0)

    @pytest.mark.asyncio
    async def test_order_counting_is_configurable(self, week, events):
        settings = EngineSettings(count_non_revenue_orders=False, count_cancelled_orders=True)
        orders = [
            events.order("sku-1", FRIDAY, status="Completed"),
            events.order("sku-1", FRIDAY, status="Pending"),
            events.order("sku-1", FRIDAY, status="Cancelled"),
        ]

        result = await Aggregator(settings).aggregate(week, paged(orders))

        assert result.buckets[4].order_count == 2
        assert result.buckets[4].revenue == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_boundary_instant_goes_to_later_bucket(self, week, events, engine_settings):
        saturday = datetime(2024, 3, 16, tzinfo=UTC)

        result = await Aggregator(engine_settings).aggregate(
            week, paged([events.order("sku-1", saturday)])
        )

        assert result.buckets[4].order_count == 0
        assert result.buckets[5].order_count == 1


class TestProducts:
    """Tests for per-product rollups"""

    @pytest.mark.asyncio
    async def test_funnel_metrics(self, week, events, engine_settings, catalog_map):
        stream = (
            events.views("sku-1", FRIDAY, 10)
            + [events.cart("sku-1", FRIDAY, quantity=2), events.cart("sku-1", FRIDAY)]
            + [
                events.order("sku-1", FRIDAY, amount=200, quantity=2),
                events.order("sku-1", FRIDAY, amount=90, status="Pending"),
            ]
        )

        result = await Aggregator(engine_settings).aggregate(week, paged(stream), catalog_map)

        product = result.products_by_id()["sku-1"]
        assert product.name == "Walnut Desk"
        assert product.category == "Furniture"
        assert product.views == 10
        assert product.add_to_carts == 3
        assert product.sales == 2
        assert product.revenue == pytest.approx(200.0)
        assert product.conversion_rate == pytest.approx(0.2)
        assert product.current_stock is None

    @pytest.mark.asyncio
    async def test_views_without_sales_convert_at_zero(self, week, events, engine_settings):
        result = await Aggregator(engine_settings).aggregate(
            week, paged(events.views("sku-2", FRIDAY, 10))
        )

        product = result.products_by_id()["sku-2"]
        assert product.views == 10
        assert product.sales == 0
        assert product.conversion_rate == 0.0

    def test_conversion_rate_without_views(self):
        assert conversion_rate(3, 0) == 0.0
        assert conversion_rate(1, 4) == 0.25

    @pytest.mark.asyncio
    async def test_unknown_product_is_uncategorized(self, week, events, engine_settings, catalog_map):
        result = await Aggregator(engine_settings).aggregate(
            week, paged([events.order("sku-999", FRIDAY)]), catalog_map
        )

        product = result.products_by_id()["sku-999"]
        assert product.name == "sku-999"
        assert product.category == UNCATEGORIZED

    @pytest.mark.asyncio
    async def test_latest_stock_wins_across_pages(self, week, events, engine_settings):
        # Pages arrive out of order; the stock reading with the latest timestamp wins
        late = events.stock("sku-1", FRIDAY + timedelta(hours=2), level=4)
        early = events.stock("sku-1", FRIDAY, level=40)

        result = await Aggregator(engine_settings).aggregate(week, paged([late], [early]))

        assert result.products_by_id()["sku-1"].current_stock == 4

    @pytest.mark.asyncio
    async def test_stock_tie_uses_arrival_order(self, week, events, engine_settings):
        first = events.stock("sku-1", FRIDAY, level=12)
        second = events.stock("sku-1", FRIDAY, level=11)

        result = await Aggregator(engine_settings).aggregate(week, paged([first, second]))

        assert result.products_by_id()["sku-1"].current_stock == 11


class TestCategoriesAndCustomers:
    """Tests for category and customer rollups"""

    @pytest.mark.asyncio
    async def test_category_share(self, week, events, engine_settings, catalog_map):
        orders = [
            events.order("sku-1", FRIDAY, amount=300),
            events.order("sku-3", FRIDAY, amount=100),
            events.order("sku-2", FRIDAY, amount=100),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders), catalog_map)

        assert [c.category for c in result.categories] == ["Furniture", "Lighting"]
        assert result.categories[0].revenue == pytest.approx(400.0)
        assert result.categories[0].share == pytest.approx(0.8)
        assert sum(c.share for c in result.categories) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_category_share_without_revenue(self, week, events, engine_settings, catalog_map):
        result = await Aggregator(engine_settings).aggregate(
            week, paged(events.views("sku-1", FRIDAY, 3)), catalog_map
        )

        assert result.categories[0].share == 0.0

    @pytest.mark.asyncio
    async def test_customers_exclude_cancelled_orders(self, week, events, engine_settings):
        orders = [
            events.order("sku-1", FRIDAY, customer_id="alice"),
            events.order("sku-1", FRIDAY + timedelta(hours=1), customer_id="alice"),
            events.order("sku-1", FRIDAY, customer_id="bob", status="Cancelled"),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders))

        customers = result.customers_by_id()
        assert set(customers) == {"alice"}
        assert customers["alice"].order_count == 2
        assert customers["alice"].last_order_at == FRIDAY + timedelta(hours=1)


class TestHeadlineFigures:
    """Tests for KPIs, status breakdown and time-of-day rollups"""

    @pytest.mark.asyncio
    async def test_kpis(self, week, events, engine_settings):
        stream = events.views("sku-1", FRIDAY, 6) + [
            events.order("sku-1", FRIDAY, amount=100, quantity=2),
            events.order("sku-1", FRIDAY, amount=50, status="Shipped"),
            events.order("sku-1", FRIDAY, amount=70, status="Pending"),
            events.order("sku-1", FRIDAY, amount=90, status="Cancelled"),
        ]

        kpis = (await Aggregator(engine_settings).aggregate(week, paged(stream))).kpis

        assert kpis.total_revenue == pytest.approx(150.0)
        assert kpis.total_orders == 3
        assert kpis.revenue_orders == 2
        assert kpis.average_order_value == pytest.approx(75.0)
        assert kpis.total_views == 6
        assert kpis.total_sales == 3
        assert kpis.conversion_rate == pytest.approx(0.5)
        assert kpis.revenue_growth is None

    @pytest.mark.asyncio
    async def test_empty_window_kpis(self, week, engine_settings):
        result = await Aggregator(engine_settings).aggregate(week, paged())

        assert result.kpis.average_order_value == 0.0
        assert result.kpis.conversion_rate == 0.0
        assert result.order_statuses == []
        assert result.peak_hours == []
        assert result.top_days == []

    @pytest.mark.asyncio
    async def test_status_breakdown_includes_cancelled(self, week, events, engine_settings):
        orders = [
            events.order("sku-1", FRIDAY, status="Cancelled"),
            events.order("sku-1", FRIDAY, status="Completed"),
            events.order("sku-1", FRIDAY, status="Pending"),
            events.order("sku-1", FRIDAY, status="Completed"),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders))

        assert [(s.status.value, s.order_count, s.share) for s in result.order_statuses] == [
            ("Pending", 1, 0.25),
            ("Completed", 2, 0.5),
            ("Cancelled", 1, 0.25),
        ]

    @pytest.mark.asyncio
    async def test_peak_hours_and_days_use_local_time(self, reference, events, engine_settings):
        # 2024-03-15 10:00 UTC is 06:00 on Friday in New York (EDT)
        week = resolve("Week", reference, "America/New_York")
        late_friday = datetime(2024, 3, 16, 2, 0, tzinfo=UTC)
        orders = [
            events.order("sku-1", FRIDAY, amount=100),
            events.order("sku-1", late_friday, amount=40),
            events.order("sku-1", late_friday + timedelta(minutes=5), amount=40),
            events.order("sku-1", datetime(2024, 3, 14, 15, 0, tzinfo=UTC), amount=500),
            events.order("sku-1", FRIDAY, amount=900, status="Cancelled"),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders))

        assert [(h.label, h.order_count) for h in result.peak_hours] == [
            ("22:00", 2),
            ("11:00", 1),
            ("06:00", 1),
        ]
        assert result.peak_hours[0].revenue == pytest.approx(80.0)
        assert [(d.label, d.weekday, d.order_count) for d in result.top_days] == [
            ("Friday", 5, 3),
            ("Thursday", 4, 1),
        ]
        assert result.top_days[0].share == pytest.approx(0.75)


class TestInvariants:
    """Tests for aggregation invariants"""

    @pytest.mark.asyncio
    async def test_revenue_totals_agree(self, week, events, engine_settings, catalog_map):
        orders = [
            events.order(f"sku-{i % 3 + 1}", FRIDAY - timedelta(days=i % 4), amount=10.1 * i)
            for i in range(1, 20)
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(orders), catalog_map)

        bucket_total = sum(b.revenue for b in result.buckets)
        product_total = sum(p.revenue for p in result.products)
        category_total = sum(c.revenue for c in result.categories)
        assert bucket_total == pytest.approx(product_total)
        assert bucket_total == pytest.approx(category_total)
        assert result.total_revenue == pytest.approx(sum(o.amount for o in orders))

    @pytest.mark.asyncio
    async def test_aggregation_is_idempotent(self, week, events, engine_settings, catalog_map):
        stream = events.views("sku-1", FRIDAY, 3) + [events.order("sku-2", FRIDAY)]
        aggregator = Aggregator(engine_settings)

        first = await aggregator.aggregate(week, paged(stream), catalog_map)
        second = await aggregator.aggregate(week, paged(stream), catalog_map)

        assert first == second


class TestRobustness:
    """Tests for malformed input, limits and cancellation"""

    @pytest.mark.asyncio
    async def test_malformed_events_are_dropped_and_counted(self, week, events, engine_settings):
        stream = [
            events.order("sku-1", FRIDAY),
            {"kind": "order", "productId": "sku-1"},
            {"kind": "refund", "productId": "sku-1", "timestamp": FRIDAY.isoformat()},
            {"kind": "view", "productId": "sku-1", "timestamp": "2024-03-15T10:00:00"},
            "not an event",
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(stream))

        assert result.dropped_events == 4
        assert result.scanned_events == 5
        assert result.total_orders == 1

    @pytest.mark.asyncio
    async def test_raw_camel_case_records(self, week, engine_settings):
        record = {
            "kind": "order",
            "id": "ord-raw",
            "productId": "sku-1",
            "customerId": "cust-9",
            "amount": 42.5,
            "timestamp": "2024-03-15T10:00:00+00:00",
            "status": "completed",
        }

        result = await Aggregator(engine_settings).aggregate(week, paged([record]))

        assert result.buckets[4].revenue == pytest.approx(42.5)

    @pytest.mark.asyncio
    async def test_out_of_window_events_are_skipped(self, week, events, engine_settings):
        stream = [
            events.order("sku-1", week.start - timedelta(microseconds=1)),
            events.order("sku-1", week.end),
            events.order("sku-1", FRIDAY),
        ]

        result = await Aggregator(engine_settings).aggregate(week, paged(stream))

        assert result.out_of_window_events == 2
        assert result.total_orders == 1

    @pytest.mark.asyncio
    async def test_row_ceiling(self, week, events):
        settings = EngineSettings(max_rows=3)
        stream = events.views("sku-1", FRIDAY, 4)

        with pytest.raises(QueryTooLargeError) as exc_info:
            await Aggregator(settings).aggregate(week, paged(stream))
        assert exc_info.value.detail["max_rows"] == 3

    @pytest.mark.asyncio
    async def test_cancelled_token_aborts(self, week, events, engine_settings):
        token = CancellationToken()
        token.cancel("user navigated away")

        with pytest.raises(QueryCancelledError) as exc_info:
            await Aggregator(engine_settings).aggregate(
                week, paged(events.views("sku-1", FRIDAY, 3)), cancel=token
            )
        assert exc_info.value.detail["reason"] == "user navigated away"

    @pytest.mark.asyncio
    async def test_cancel_between_pages(self, week, events, engine_settings):
        token = CancellationToken()

        async def stream():
            yield events.views("sku-1", FRIDAY, 2)
            token.cancel()
            yield events.views("sku-1", FRIDAY, 2)

        with pytest.raises(QueryCancelledError):
            await Aggregator(engine_settings).aggregate(week, stream(), cancel=token)

    @pytest.mark.asyncio
    async def test_expired_deadline_aborts(self, week, events, engine_settings):
        token = CancellationToken.with_timeout(-1)

        with pytest.raises(QueryCancelledError):
            await Aggregator(engine_settings).aggregate(
                week, paged(events.views("sku-1", FRIDAY, 1)), cancel=token
            )
