"""
Status Cache

Single-slot TTL cache with in-flight deduplication. The slot is either
empty, holding a pending fetch, or holding a value plus the monotonic time
it was fetched. Concurrent callers during a fetch share its result, so there
is at most one outstanding upstream request.
"""

import asyncio
from typing import Any, Awaitable, Callable, Generic, TypeVar

from common.logging_setup import get_service_logger

logger = get_service_logger("status.cache")

T = TypeVar("T")


class StatusCache(Generic[T]):
    """TTL cache around one async fetch function"""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        ttl_s: float = 45.0,
        monotonic: Callable[[], float] | None = None,
    ):
        self._fetch = fetch
        self.ttl_s = ttl_s
        self._monotonic = monotonic or (lambda: asyncio.get_running_loop().time())

        self._value: T | None = None
        self._fetched_at: float | None = None
        self._in_flight: asyncio.Future | None = None
        self._fetch_count = 0

    @property
    def fetch_count(self) -> int:
        """Number of upstream fetches issued"""
        return self._fetch_count

    def is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._monotonic() - self._fetched_at < self.ttl_s

    async def get(self) -> T:
        """
        Return the cached value if fresh, otherwise join or start a fetch.

        Raises whatever the fetch raises; a failed fetch is not cached.
        """
        if self.is_fresh():
            return self._value

        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._refresh())

        # Shield so one cancelled caller doesn't cancel the shared fetch
        return await asyncio.shield(self._in_flight)

    async def _refresh(self) -> T:
        self._fetch_count += 1
        try:
            value = await self._fetch()
            self._value = value
            self._fetched_at = self._monotonic()
            return value
        finally:
            self._in_flight = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "fresh": self.is_fresh(),
            "in_flight": self._in_flight is not None,
            "fetch_count": self._fetch_count,
        }
