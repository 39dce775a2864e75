"""
Test Suite Configuration
"""
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from seller_analytics.config import CacheSettings, EngineSettings
from seller_analytics.engine.models import (
    CartEvent,
    OrderEvent,
    Product,
    StockEvent,
    ViewEvent,
)
from seller_analytics.store import InMemoryEventStore, SqlEventStore, create_schema

UTC = timezone.utc

# Wednesday; the week around it runs Mon 2024-03-11 to Mon 2024-03-18 (UTC)
REFERENCE = datetime(2024, 3, 13, 12, 0, tzinfo=UTC)


class EventFactory:
    """Builds events with sequential ids"""

    def __init__(self):
        self._ids = count(1)

    def order(
        self,
        product_id: str,
        timestamp: datetime,
        amount: float = 100.0,
        status: str = "Completed",
        customer_id: str = "cust-1",
        quantity: int = 1,
    ) -> OrderEvent:
        return OrderEvent(
            id=f"ord-{next(self._ids)}",
            product_id=product_id,
            customer_id=customer_id,
            amount=amount,
            quantity=quantity,
            timestamp=timestamp,
            status=status,
        )

    def view(self, product_id: str, timestamp: datetime) -> ViewEvent:
        return ViewEvent(product_id=product_id, timestamp=timestamp)

    def views(self, product_id: str, timestamp: datetime, n: int) -> List[ViewEvent]:
        return [self.view(product_id, timestamp + timedelta(seconds=i)) for i in range(n)]

    def cart(self, product_id: str, timestamp: datetime, quantity: int = 1) -> CartEvent:
        return CartEvent(product_id=product_id, timestamp=timestamp, quantity=quantity)

    def stock(self, product_id: str, timestamp: datetime, level: int, delta: int = 0) -> StockEvent:
        return StockEvent(
            product_id=product_id,
            delta_quantity=delta,
            resulting_stock=level,
            timestamp=timestamp,
        )


@pytest.fixture
def events() -> EventFactory:
    return EventFactory()


@pytest.fixture
def reference() -> datetime:
    return REFERENCE


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings independent of the environment"""
    return EngineSettings(
        default_timezone="UTC",
        max_rows=1_000_000,
        page_size=2,
        cancel_check_interval=1,
        query_timeout_seconds=30.0,
    )


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings(enabled=True, backend="memory", ttl_seconds=60, as_of_resolution_seconds=60)


@pytest.fixture
def catalog() -> List[Product]:
    return [
        Product(id="sku-1", name="Walnut Desk", category="Furniture", min_stock_threshold=10),
        Product(id="sku-2", name="Desk Lamp", category="Lighting", min_stock_threshold=5),
        Product(id="sku-3", name="Oak Chair", category="Furniture", min_stock_threshold=0),
    ]


@pytest.fixture
def store(catalog) -> InMemoryEventStore:
    return InMemoryEventStore(products=catalog)


@pytest_asyncio.fixture
async def sql_store():
    """SQL event store on an in-memory SQLite database"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    await create_schema(engine)

    yield SqlEventStore.from_engine(engine)

    await engine.dispose()
