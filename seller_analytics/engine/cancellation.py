"""
Query Cancellation

A token shared between the caller and an in-flight scan. The scan polls it
between pages and every few thousand events, and each page fetch is bounded
by it; once set, or once its deadline passes, the scan raises
QueryCancelledError instead of returning a partial result.
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from .errors import QueryCancelledError

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation signal with an optional deadline.

    Example:
        token = CancellationToken.with_timeout(5.0)
        result = await facade.run(query, cancel=token)
        ...
        token.cancel("client disconnected")
    """

    def __init__(self, deadline: Optional[float] = None):
        self._deadline = deadline  # time.monotonic() based
        self._reason: Optional[str] = None
        self._cancelled = asyncio.Event()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one"""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise QueryCancelledError(
                "Query cancelled",
                detail={"reason": self._reason},
            )
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise QueryCancelledError(
                "Query deadline exceeded",
                detail={"reason": "deadline"},
            )

    async def bound(self, awaitable: Awaitable[T]) -> T:
        """
        Await a store call, giving up when the token fires first.

        The call is cancelled and awaited before QueryCancelledError is
        raised, so an interrupted page iterator can still be closed.
        """
        self.raise_if_cancelled()

        call = asyncio.ensure_future(awaitable)
        signal = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait(
                {call, signal},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            signal.cancel()
            if not call.done():
                call.cancel()
                await asyncio.gather(call, return_exceptions=True)

        if not call.cancelled():
            return call.result()

        self.raise_if_cancelled()
        raise QueryCancelledError("Query deadline exceeded", detail={"reason": "deadline"})
