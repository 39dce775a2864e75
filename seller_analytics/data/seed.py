"""
Event Log Seeder
Writes a synthetic catalog and event history into the configured event store
"""

import argparse
import asyncio

from seller_analytics.config import get_settings
from seller_analytics.config.logging import configure_logging
from seller_analytics.data.generators import CatalogGenerator, EventGenerator
from seller_analytics.store import SqlEventStore, create_schema
from seller_analytics.store.connection import close_database, init_database

BATCH_SIZE = 5000


async def seed(products: int, orders: int, days: int, seed: int) -> None:
    engine = await init_database()
    await create_schema(engine)
    store = SqlEventStore.from_engine(engine)

    print(f"📊 Generating {products:,} products...")
    catalog = CatalogGenerator(seed=seed).generate(products)
    await store.upsert_products(catalog)

    print(f"📊 Generating {orders:,} orders over {days} days...")
    events = EventGenerator(catalog, seed=seed).generate(n_orders=orders, days=days)

    for i in range(0, len(events), BATCH_SIZE):
        await store.append(*events[i:i + BATCH_SIZE])
    print(f"   ✅ event_log: {len(events):,} rows")

    await close_database()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the event store with synthetic seller activity")
    parser.add_argument("--products", type=int, default=50)
    parser.add_argument("--orders", type=int, default=2000)
    parser.add_argument("--days", type=int, default=60)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    # Progress goes to stdout; only warnings from the store are logged
    monitoring = get_settings().monitoring.model_copy(update={"log_level": "WARNING"})
    configure_logging(monitoring)
    asyncio.run(seed(args.products, args.orders, args.days, args.seed))


if __name__ == "__main__":
    main()
