"""
Synthetic Event Generator

Generates realistic seller activity for development, demos and tests.
Includes:
- Product catalog entries across categories with minimum stock levels
- Product page views and add-to-cart events
- Orders with a realistic status mix
- Stock movements following sales and restocks
"""

import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from faker import Faker

from seller_analytics.engine.models import (
    CartEvent,
    OrderEvent,
    OrderStatus,
    Product,
    StockEvent,
    ViewEvent,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORIES = [
    ("Electronics", ["Phones", "Laptops", "Tablets", "Headphones", "Cameras"]),
    ("Clothing", ["Shirts", "Pants", "Dresses", "Shoes", "Jackets"]),
    ("Home & Garden", ["Furniture", "Kitchen", "Bedding", "Garden", "Decor"]),
    ("Sports", ["Fitness", "Outdoor", "Team Sports", "Cycling"]),
    ("Beauty", ["Skincare", "Makeup", "Haircare", "Fragrance"]),
    ("Books", ["Fiction", "Non-Fiction", "Children", "Comics"]),
]

PRICE_RANGES = {
    "Electronics": (50, 2000),
    "Clothing": (20, 500),
    "Home & Garden": (30, 1000),
    "Sports": (25, 800),
    "Beauty": (10, 200),
    "Books": (10, 50),
}

ORDER_STATUSES = [
    (OrderStatus.PENDING, 0.05),
    (OrderStatus.PROCESSING, 0.07),
    (OrderStatus.SHIPPED, 0.13),
    (OrderStatus.COMPLETED, 0.70),
    (OrderStatus.CANCELLED, 0.05),
]

# Events generated per order
VIEWS_PER_ORDER = 12
CARTS_PER_ORDER = 2.5


# =============================================================================
# GENERATORS
# =============================================================================

class CatalogGenerator:
    """Generate product catalog entries"""

    def __init__(self, seed: Optional[int] = 42):
        self.rng = random.Random(seed)
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)

    def generate(self, n: int = 50) -> List[Product]:
        products = []
        for i in range(n):
            category, subcategories = self.rng.choice(CATEGORIES)
            products.append(Product(
                id=f"PROD-{i + 1:05d}",
                name=f"{self.fake.word().title()} {self.rng.choice(subcategories)}",
                category=category,
                min_stock_threshold=self.rng.choice([0, 5, 10, 20, 50]),
            ))
        return products


class EventGenerator:
    """
    Generate an event log for a catalog.

    Example:
        catalog = CatalogGenerator().generate(50)
        events = EventGenerator(catalog).generate(n_orders=1000, days=30)
    """

    def __init__(
        self,
        catalog: Sequence[Product],
        n_customers: int = 200,
        seed: Optional[int] = 42,
    ):
        if not catalog:
            raise ValueError("Catalog must contain at least one product")

        self.rng = random.Random(seed)
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)

        self.catalog = list(catalog)
        self.prices: Dict[str, float] = {
            p.id: round(self.rng.uniform(*PRICE_RANGES.get(p.category, (10, 100))), 2)
            for p in self.catalog
        }
        self.customer_ids = [
            str(uuid.UUID(int=self.rng.getrandbits(128))) for _ in range(n_customers)
        ]
        self.stock: Dict[str, int] = {p.id: self.rng.randint(0, 200) for p in self.catalog}

    def _timestamp(self, start: datetime, end: datetime) -> datetime:
        return self.fake.date_time_between(start_date=start, end_date=end, tzinfo=timezone.utc)

    def _status(self) -> OrderStatus:
        statuses, weights = zip(*ORDER_STATUSES)
        return self.rng.choices(statuses, weights=weights)[0]

    def generate(
        self,
        n_orders: int = 1000,
        days: int = 30,
        end: Optional[datetime] = None,
    ) -> List:
        """
        Generate orders plus proportional views, carts and stock events.

        Args:
            n_orders: Number of orders
            days: Length of the generated history
            end: Exclusive end of the history (defaults to now, UTC)

        Returns:
            Events sorted by timestamp
        """
        end = end or datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        events = []

        for _ in range(int(n_orders * VIEWS_PER_ORDER)):
            product = self.rng.choice(self.catalog)
            events.append(ViewEvent(product_id=product.id, timestamp=self._timestamp(start, end)))

        for _ in range(int(n_orders * CARTS_PER_ORDER)):
            product = self.rng.choice(self.catalog)
            events.append(CartEvent(
                product_id=product.id,
                customer_id=self.rng.choice(self.customer_ids),
                quantity=self.rng.choices([1, 2, 3], weights=[0.8, 0.15, 0.05])[0],
                timestamp=self._timestamp(start, end),
            ))

        orders = []
        for _ in range(n_orders):
            product = self.rng.choice(self.catalog)
            quantity = self.rng.choices([1, 2, 3, 4], weights=[0.7, 0.2, 0.07, 0.03])[0]
            orders.append(OrderEvent(
                id=f"ORD-{self.fake.unique.random_number(digits=10)}",
                product_id=product.id,
                customer_id=self.rng.choice(self.customer_ids),
                amount=round(self.prices[product.id] * quantity, 2),
                quantity=quantity,
                timestamp=self._timestamp(start, end),
                status=self._status(),
            ))
        events.extend(orders)
        events.extend(self._stock_movements(orders, start, end))

        events.sort(key=lambda e: e.timestamp)
        return events

    def _stock_movements(self, orders: List[OrderEvent], start: datetime, end: datetime) -> List[StockEvent]:
        """Decrements for fulfilled orders, with a restock whenever stock runs out"""
        movements = [
            StockEvent(product_id=pid, delta_quantity=level, resulting_stock=level, timestamp=start)
            for pid, level in self.stock.items()
        ]

        for order in sorted(orders, key=lambda o: o.timestamp):
            if order.status == OrderStatus.CANCELLED:
                continue
            level = self.stock[order.product_id]
            if level < order.quantity:
                restock = self.rng.randint(50, 200)
                level += restock
                movements.append(StockEvent(
                    product_id=order.product_id,
                    delta_quantity=restock,
                    resulting_stock=level,
                    timestamp=order.timestamp,
                ))
            level -= order.quantity
            self.stock[order.product_id] = level
            movements.append(StockEvent(
                product_id=order.product_id,
                delta_quantity=-order.quantity,
                resulting_stock=level,
                timestamp=order.timestamp,
            ))

        return movements
