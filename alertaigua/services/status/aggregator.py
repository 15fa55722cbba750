"""
Status Aggregator

On-demand diagnostics view. Combines the local water-data health with the
push provider's public status page, which is cached for a short TTL with
single-flight deduplication.
"""

from dataclasses import dataclass, field
from typing import Any

from common.config import AvailabilitySettings
from common.logging_setup import get_service_logger
from common.state import StateStore
from common.timestamp import Clock, age_seconds

from .cache import StatusCache
from .statuspage import ERROR, OK, WARNING, StatusPageClient, all_error

logger = get_service_logger("status.aggregator")


@dataclass
class ServiceStatusReport:
    aa_status: str
    is_unavailable: bool
    saihebro_status: str
    pushsafer_status: dict[str, str] = field(default_factory=all_error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "aa_status": self.aa_status,
            "is_unavailable": self.is_unavailable,
            "saihebro_status": self.saihebro_status,
            "pushsafer_status": dict(self.pushsafer_status),
        }


class StatusAggregator:
    """Builds ServiceStatusReport from local state and the cached status page"""

    def __init__(
        self,
        state: StateStore,
        status_page: StatusPageClient,
        settings: AvailabilitySettings,
        clock: Clock,
        cache_ttl_s: float = 45.0,
    ):
        self.state = state
        self.status_page = status_page
        self.settings = settings
        self.clock = clock
        self.cache: StatusCache[dict[str, str]] = StatusCache(
            status_page.fetch, ttl_s=cache_ttl_s, monotonic=clock.monotonic
        )

    def aa_status(self) -> str:
        """ok when the latest reading is recent, recently fetched and errors are below threshold"""
        snapshot = self.state.snapshot()
        availability = self.state.availability()
        if snapshot is None:
            return ERROR
        if availability.error_count >= self.settings.error_threshold:
            return ERROR

        now = self.clock.now()
        if age_seconds(snapshot.last_updated, now) > self.settings.age_threshold_s:
            return ERROR
        if age_seconds(snapshot.last_fetched, now) > self.settings.fetch_fresh_s:
            return ERROR
        return OK

    def saihebro_status(self) -> str:
        availability = self.state.availability()
        if availability.is_unavailable:
            return ERROR
        if availability.error_count > 0:
            return WARNING
        return OK

    async def pushsafer_status(self) -> dict[str, str]:
        try:
            return await self.cache.get()
        except Exception as e:
            logger.error(f"Error fetching Pushsafer status: {e}")
            return all_error()

    async def get_status(self) -> ServiceStatusReport:
        return ServiceStatusReport(
            aa_status=self.aa_status(),
            is_unavailable=self.state.availability().is_unavailable,
            saihebro_status=self.saihebro_status(),
            pushsafer_status=await self.pushsafer_status(),
        )
