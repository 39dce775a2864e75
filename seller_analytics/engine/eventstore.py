"""
Event Store Interface

The analytics core reads the append-only event log through a paginated
time-range query and looks up the product catalog. Adapters live in
``seller_analytics.store``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import structlog

from .cancellation import CancellationToken
from .errors import AnalyticsError, StoreUnavailableError
from .models import Product

logger = structlog.get_logger(__name__)

Page = Sequence[Any]


class EventStore(ABC):
    """Read-only view of the event log"""

    @abstractmethod
    def read(self, start: datetime, end: datetime, page_size: int) -> AsyncIterator[Page]:
        """
        Stream events with ``start <= timestamp < end`` in pages.

        Timestamps are non-decreasing within a page; ordering across pages is
        not guaranteed. Records are raw dicts or event models.
        """

    @abstractmethod
    async def catalog(self) -> Dict[str, Product]:
        """Product lookup table keyed by product id"""

    async def ping(self) -> bool:
        return True


async def iter_pages(
    store: EventStore,
    start: datetime,
    end: datetime,
    page_size: int,
    cancel: Optional[CancellationToken] = None,
) -> AsyncIterator[Page]:
    """
    Page stream with store failures surfaced as StoreUnavailableError.

    With a token, every page fetch is bounded by it, so a stalled store
    cannot hold the scan past its deadline. Failures are not retried here;
    retry policy belongs to the caller.
    """
    pages = store.read(start, end, page_size)
    try:
        while True:
            try:
                if cancel is None:
                    page = await pages.__anext__()
                else:
                    page = await cancel.bound(pages.__anext__())
            except StopAsyncIteration:
                return
            except AnalyticsError:
                raise
            except Exception as e:
                logger.error("Event store read failed", error=str(e), error_type=type(e).__name__)
                raise StoreUnavailableError(
                    "Event store read failed",
                    detail={"error": str(e)},
                    cause=e,
                )
            yield page
    finally:
        if hasattr(pages, "aclose"):
            await pages.aclose()


async def load_catalog(
    store: EventStore,
    cancel: Optional[CancellationToken] = None,
) -> Dict[str, Product]:
    try:
        if cancel is None:
            return await store.catalog()
        return await cancel.bound(store.catalog())
    except AnalyticsError:
        raise
    except Exception as e:
        logger.error("Catalog lookup failed", error=str(e), error_type=type(e).__name__)
        raise StoreUnavailableError("Catalog lookup failed", detail={"error": str(e)}, cause=e)
