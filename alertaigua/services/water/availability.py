"""
Availability Monitor

Derives the "service degraded" flag from the error counter and data age,
and announces edge transitions only:

    available   -> unavailable : one serviceUnavailable broadcast
    unavailable -> available   : one serviceAvailable broadcast

The flag follows the data. A failed broadcast is logged and the flag still
flips, so sustained failure produces exactly one notification batch.
"""

from typing import Any

from common.config import AvailabilitySettings
from common.logging_setup import get_service_logger
from common.state import StateStore
from common.timestamp import Clock, age_seconds
from services.notify.messages import MessageKind

logger = get_service_logger("water.availability")


class AvailabilityMonitor:
    """Edge-triggered service availability tracking"""

    def __init__(
        self,
        state: StateStore,
        dispatcher: Any,
        settings: AvailabilitySettings,
        clock: Clock,
    ):
        self.state = state
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    def is_data_stale(self) -> bool:
        """True when there is no snapshot or the reading is older than the age threshold"""
        snapshot = self.state.snapshot()
        if snapshot is None:
            return True
        return age_seconds(snapshot.last_updated, self.clock.now()) > self.settings.age_threshold_s

    def _decide(self, error_count: int, stale: bool) -> bool:
        return error_count >= self.settings.error_threshold or stale

    def should_be_unavailable(self) -> bool:
        return self._decide(self.state.availability().error_count, self.is_data_stale())

    async def reevaluate(self) -> None:
        """Re-derive the flag and broadcast if it changed"""
        current = self.state.availability()
        stale = self.is_data_stale()
        should_be_unavailable = self._decide(current.error_count, stale)

        if should_be_unavailable == current.is_unavailable:
            return

        kind = (
            MessageKind.SERVICE_UNAVAILABLE
            if should_be_unavailable
            else MessageKind.SERVICE_AVAILABLE
        )

        if should_be_unavailable:
            logger.warning(
                f"Service unavailable (errors={current.error_count}, stale={stale})",
                extra={"error_count": current.error_count, "stale": stale},
            )
        else:
            logger.info("Service restored", extra={"error_count": current.error_count})

        try:
            await self.dispatcher.broadcast(kind)
        except Exception as e:
            logger.error(
                f"Error while warning users of {kind.value}: {e}",
                extra={"kind": kind.value},
            )

        self.state.set_unavailable(should_be_unavailable)
