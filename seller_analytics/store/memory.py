"""
In-Memory Event Store

Event log held in a Python list, used for fixtures, tests and embedding the
engine without a database.
"""

from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from pydantic import BaseModel

from seller_analytics.engine.bucketing import to_epoch_micros
from seller_analytics.engine.eventstore import EventStore, Page
from seller_analytics.engine.models import Product


def _event_micros(record: Any) -> Optional[int]:
    """Epoch micros of a record's timestamp, None when it cannot be read"""
    if isinstance(record, BaseModel):
        ts = getattr(record, "timestamp", None)
    elif isinstance(record, dict):
        ts = record.get("timestamp")
    else:
        return None

    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts)
        except ValueError:
            return None
    if not isinstance(ts, datetime) or ts.utcoffset() is None:
        return None
    return to_epoch_micros(ts)


class InMemoryEventStore(EventStore):
    """
    Event log held in memory.

    Records whose timestamp cannot be read are passed through so the
    aggregator can count them as malformed.

    Example:
        store = InMemoryEventStore(products=[Product(...)])
        store.append({"kind": "view", "productId": "sku-1", "timestamp": ts})
    """

    def __init__(
        self,
        events: Optional[Iterable[Any]] = None,
        products: Optional[Iterable[Product]] = None,
    ):
        self._events: List[Any] = list(events or [])
        self._products: Dict[str, Product] = {p.id: p for p in products or []}

    def append(self, *events: Any) -> None:
        self._events.extend(events)

    def add_products(self, *products: Product) -> None:
        for product in products:
            self._products[product.id] = product

    def __len__(self) -> int:
        return len(self._events)

    async def read(self, start: datetime, end: datetime, page_size: int) -> AsyncIterator[Page]:
        start_micros, end_micros = to_epoch_micros(start), to_epoch_micros(end)

        matched = []
        for seq, record in enumerate(self._events):
            micros = _event_micros(record)
            if micros is None or start_micros <= micros < end_micros:
                matched.append((start_micros if micros is None else micros, seq, record))
        matched.sort(key=lambda item: (item[0], item[1]))

        for offset in range(0, len(matched), page_size):
            yield [record for _, _, record in matched[offset:offset + page_size]]

    async def catalog(self) -> Dict[str, Product]:
        return dict(self._products)
