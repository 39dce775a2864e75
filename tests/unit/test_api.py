"""
Unit Tests - HTTP API
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from seller_analytics.config import EngineSettings, SecuritySettings, Settings
from seller_analytics.engine.eventstore import EventStore
from seller_analytics.main import create_app
from seller_analytics.serving.api.middleware import SlidingWindowLimiter

UTC = timezone.utc
FRIDAY = datetime(2024, 3, 15, 10, 0, tzinfo=UTC)
REFERENCE = "2024-03-13T12:00:00Z"


class UnreachableStore(EventStore):
    async def read(self, start, end, page_size):
        raise OSError("connection refused")
        yield []

    async def catalog(self):
        return {}

    async def ping(self):
        raise OSError("connection refused")


def make_client(store, engine_settings, **sections):
    app = create_app(store=store, settings=Settings(engine=engine_settings, **sections))
    return TestClient(app)


@pytest.fixture
def client(store, engine_settings):
    with make_client(store, engine_settings) as client:
        yield client


@pytest.fixture
def seeded(store, events):
    store.append(*[events.order("sku-1", FRIDAY + timedelta(minutes=i)) for i in range(5)])
    store.append(events.order("sku-2", FRIDAY, amount=20), events.stock("sku-1", FRIDAY, level=2))
    return store


class TestDashboardEndpoints:
    """Tests for the dashboard routes"""

    def test_post_query(self, client, seeded):
        response = client.post("/api/v1/dashboard/query", json={
            "rangeKeyword": "Week",
            "referenceInstant": REFERENCE,
            "sortField": "revenue",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["rangeKeyword"] == "Week"
        assert body["granularity"] == "daily"
        assert body["buckets"][4]["label"] == "Fri"
        assert body["buckets"][4]["orderCount"] == 6
        assert [p["productId"] for p in body["productSummaries"]] == ["sku-1", "sku-2"]
        assert body["kpis"]["totalOrders"] == 6
        assert body["kpis"]["averageOrderValue"] == pytest.approx(520 / 6)
        assert body["peakHours"][0]["label"] == "10:00"
        assert body["topDays"][0]["label"] == "Friday"
        assert body["orderStatuses"] == [{"status": "Completed", "orderCount": 6, "share": 1.0}]

    def test_get_dashboard(self, client, seeded):
        response = client.get("/api/v1/dashboard/week", params={
            "reference": REFERENCE,
            "sort": "revenue",
            "limit": 1,
        })

        assert response.status_code == 200
        body = response.json()
        assert len(body["productSummaries"]) == 1
        assert body["diagnostics"]["truncated"] is True

    def test_get_custom_range(self, client, seeded):
        response = client.get("/api/v1/dashboard/custom", params={
            "start": "2024-03-15T00:00:00Z",
            "end": "2024-03-16T00:00:00Z",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["granularity"] == "hourly"
        assert sum(b["orderCount"] for b in body["buckets"]) == 6

    def test_get_with_catalog_alerts(self, client, seeded):
        response = client.get("/api/v1/dashboard/week", params={"reference": REFERENCE, "alerts": "true"})

        alerts = response.json()["alerts"]
        assert [(a["productId"], a["severity"]) for a in alerts] == [("sku-1", "Critical")]

    def test_unknown_sort_field_is_a_diagnostic(self, client, seeded):
        response = client.get("/api/v1/dashboard/week", params={"reference": REFERENCE, "sort": "margin"})

        assert response.status_code == 200
        body = response.json()
        assert body["diagnostics"]["errors"][0]["code"] == "unknown_sort_field"
        assert [p["productId"] for p in body["productSummaries"]] == ["sku-1", "sku-2"]

    def test_invalid_body(self, client):
        response = client.post("/api/v1/dashboard/query", json={"rangeKeyword": "Week", "limit": 0})

        assert response.status_code == 422


class TestErrorMapping:
    """Engine errors map to stable codes and statuses"""

    def test_unknown_range(self, client):
        response = client.get("/api/v1/dashboard/fortnight")

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "invalid_range"
        assert body["retryable"] is False

    def test_unknown_timezone(self, client):
        response = client.get("/api/v1/dashboard/week", params={"timezone": "Nowhere/Special"})

        assert response.status_code == 400
        assert response.json()["detail"]["timezone"] == "Nowhere/Special"

    def test_query_too_large(self, store, events):
        store.append(*events.views("sku-1", FRIDAY, 3))

        with make_client(store, EngineSettings(max_rows=1)) as client:
            response = client.get("/api/v1/dashboard/week", params={"reference": REFERENCE})

        assert response.status_code == 413
        assert response.json()["code"] == "query_too_large"

    def test_store_unavailable(self, engine_settings):
        with make_client(UnreachableStore(), engine_settings) as client:
            response = client.get("/api/v1/dashboard/week")

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "store_unavailable"
        assert body["retryable"] is True


class TestHealthEndpoints:
    """Tests for health, readiness and metrics"""

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["event_store"]["backend"] == "InMemoryEventStore"
        assert body["checks"]["cache"]["status"] == "disabled"

    def test_liveness(self, client):
        assert client.get("/api/v1/health/live").json() == {"status": "alive"}

    def test_readiness(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_not_ready_when_store_is_down(self, engine_settings):
        with make_client(UnreachableStore(), engine_settings) as client:
            response = client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "event_store_unavailable"

    def test_metrics(self, client, seeded):
        client.get("/api/v1/dashboard/week", params={"reference": REFERENCE})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "dashboard_queries_total" in response.text

    def test_request_headers(self, client):
        response = client.get("/api/v1/health/live", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Response-Time"].endswith("ms")


class TestRateLimiting:
    """Tests for the per-client rate limit"""

    def test_dashboard_requests_are_limited(self, store, engine_settings):
        security = SecuritySettings(RATE_LIMIT_REQUESTS=2, RATE_LIMIT_WINDOW_SECONDS=60)

        with make_client(store, engine_settings, security=security) as client:
            statuses = [
                client.get("/api/v1/dashboard/week", params={"reference": REFERENCE}).status_code
                for _ in range(3)
            ]
            limited = client.get("/api/v1/dashboard/week", params={"reference": REFERENCE})
            live = client.get("/api/v1/health/live")

        assert statuses == [200, 200, 429]
        assert limited.json()["code"] == "rate_limited"
        assert limited.headers["Retry-After"] == "60"
        assert live.status_code == 200

    def test_window_slides(self):
        now = [0.0]
        limiter = SlidingWindowLimiter(max_requests=2, window_seconds=10, clock=lambda: now[0])

        assert limiter.admit("10.0.0.1") == (True, 1)
        assert limiter.admit("10.0.0.1") == (True, 0)
        assert limiter.admit("10.0.0.1") == (False, 0)
        now[0] = 10.0
        assert limiter.admit("10.0.0.1") == (True, 1)

    def test_idle_clients_are_evicted(self):
        now = [0.0]
        limiter = SlidingWindowLimiter(max_requests=5, window_seconds=10, clock=lambda: now[0])

        for i in range(50):
            limiter.admit(f"10.0.0.{i}")
        assert len(limiter) == 50

        now[0] = 15.0
        limiter.admit("10.0.1.1")

        assert len(limiter) == 1
