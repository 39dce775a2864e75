"""
SQL Event Store

SQLAlchemy 2.0 async adapter over the event_log and catalog_products tables.
Range reads use keyset pagination on (occurred_at_us, seq) with a fresh
session per page, so no connection is held while the engine folds a page.
"""

from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable

import structlog
from sqlalchemy import and_, or_, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from seller_analytics.engine.bucketing import to_epoch_micros
from seller_analytics.engine.eventstore import EventStore, Page
from seller_analytics.engine.models import EVENT_ADAPTER, Product
from .models import Base, CatalogProduct, EventLogEntry

logger = structlog.get_logger(__name__)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the event store tables if they do not exist"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SqlEventStore(EventStore):
    """
    Event store backed by a relational database.

    Example:
        store = SqlEventStore.from_engine(engine)
        await store.append(*events)
        async for page in store.read(start, end, page_size=5000):
            ...
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "SqlEventStore":
        return cls(async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        ))

    async def read(self, start: datetime, end: datetime, page_size: int) -> AsyncIterator[Page]:
        start_us, end_us = to_epoch_micros(start), to_epoch_micros(end)
        cursor = None

        while True:
            stmt = select(
                EventLogEntry.seq,
                EventLogEntry.occurred_at_us,
                EventLogEntry.payload,
            ).where(
                EventLogEntry.occurred_at_us >= start_us,
                EventLogEntry.occurred_at_us < end_us,
            )
            if cursor is not None:
                last_us, last_seq = cursor
                stmt = stmt.where(
                    or_(
                        EventLogEntry.occurred_at_us > last_us,
                        and_(
                            EventLogEntry.occurred_at_us == last_us,
                            EventLogEntry.seq > last_seq,
                        ),
                    )
                )
            stmt = stmt.order_by(EventLogEntry.occurred_at_us, EventLogEntry.seq).limit(page_size)

            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()

            if not rows:
                return

            logger.debug("Event page read", rows=len(rows))
            yield [row.payload for row in rows]

            if len(rows) < page_size:
                return
            cursor = (rows[-1].occurred_at_us, rows[-1].seq)

    async def catalog(self) -> Dict[str, Product]:
        async with self._session_factory() as session:
            result = await session.execute(select(CatalogProduct))
            return {
                row.id: Product(
                    id=row.id,
                    name=row.name,
                    category=row.category,
                    min_stock_threshold=row.min_stock_threshold or 0,
                )
                for row in result.scalars()
            }

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    # =========================================================================
    # WRITE SIDE (upstream systems and seeding only)
    # =========================================================================

    async def append(self, *events: Any) -> int:
        """
        Append validated events to the log.

        Raises:
            pydantic.ValidationError: A record is not a valid event
        """
        entries = []
        for raw in events:
            event = EVENT_ADAPTER.validate_python(raw)
            entries.append(EventLogEntry(
                kind=event.kind,
                product_id=event.product_id,
                occurred_at_us=to_epoch_micros(event.timestamp),
                payload=event.model_dump(mode="json", by_alias=True),
            ))

        async with self._session_factory() as session:
            session.add_all(entries)
            await session.commit()

        logger.info("Events appended", count=len(entries))
        return len(entries)

    async def upsert_products(self, products: Iterable[Product]) -> None:
        async with self._session_factory() as session:
            for product in products:
                await session.merge(CatalogProduct(
                    id=product.id,
                    name=product.name,
                    category=product.category,
                    min_stock_threshold=product.min_stock_threshold,
                ))
            await session.commit()
