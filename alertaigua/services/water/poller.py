"""
Water Data Poller

One fetch cycle, guarded by a single exclusive lock:

1. Resolve the signal-to-metric mapping from configuration
2. Fetch both signals through the retry controller
3. No data            -> count a failure
4. Validate readings  -> count a failure if incomplete or non-finite
5. Parse the reading time; replace the snapshot, reset the error counter,
   evaluate every subscriber and dispatch notifications
6. Always re-evaluate service availability

A trigger that arrives while a cycle is running is dropped, not queued.
The lock stays held through retry backoff sleeps, so a slow upstream
delays the next cycle instead of overlapping with it.
"""

import asyncio
import math
import time
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from common.config import Metric, SensorDefinition, build_metric_map
from common.exceptions import ConfigurationError, MalformedDataError
from common.logging_setup import get_service_logger, log_cycle
from common.state import StateStore, WaterSnapshot
from common.timestamp import Clock, parse_sensor_datetime

from .alarm_engine import AlarmEngine
from .availability import AvailabilityMonitor
from .gateway import SensorReading
from .retry import RetryController

logger = get_service_logger("water.poller")


class CycleOutcome(str, Enum):
    """How one run_once() call ended"""
    SKIPPED = "skipped"
    SUCCESS = "success"
    NO_DATA = "no_data"
    INVALID_DATA = "invalid_data"
    INVALID_TIMESTAMP = "invalid_timestamp"
    CONFIGURATION_ERROR = "configuration_error"
    FAILED = "failed"


def validate_readings(
    readings: list[SensorReading],
    metric_map: dict[Metric, str],
) -> dict[Metric, SensorReading]:
    """
    Pick exactly one finite reading per expected signal.

    Raises:
        MalformedDataError: missing, duplicated or non-finite reading
    """
    validated: dict[Metric, SensorReading] = {}
    for metric, signal_id in metric_map.items():
        matches = [r for r in readings if r.signal_id == signal_id]
        if len(matches) != 1:
            raise MalformedDataError(
                f"Expected one reading for {signal_id} ({metric.value}), got {len(matches)}"
            )
        reading = matches[0]
        if not math.isfinite(reading.value):
            raise MalformedDataError(f"Non-finite value for {signal_id}: {reading.value}")
        validated[metric] = reading
    return validated


class WaterDataPoller:
    """Fetch, validate, store, evaluate and dispatch; one cycle at a time"""

    def __init__(
        self,
        sensors: list[SensorDefinition],
        retry: RetryController,
        state: StateStore,
        alarm_engine: AlarmEngine,
        dispatcher: Any,
        availability: AvailabilityMonitor,
        clock: Clock,
        sensor_timezone: ZoneInfo,
    ):
        self.sensors = sensors
        self.retry = retry
        self.state = state
        self.alarm_engine = alarm_engine
        self.dispatcher = dispatcher
        self.availability = availability
        self.clock = clock
        self.sensor_timezone = sensor_timezone

        self._lock = asyncio.Lock()
        self._cycle_count = 0
        self._skipped_count = 0
        self._last_outcome: CycleOutcome | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> CycleOutcome:
        """
        Run one cycle unless one is already in progress.

        Never raises for upstream, data, configuration or persistence
        failures; they are counted and logged.
        """
        # No await between the check and the acquire
        if self._lock.locked():
            self._skipped_count += 1
            logger.info("Previous fetch still in progress, skipping")
            return CycleOutcome.SKIPPED

        async with self._lock:
            self._cycle_count += 1
            start = time.time()
            outcome = CycleOutcome.FAILED
            try:
                outcome = await self._cycle()
            except Exception as e:
                logger.error(f"Unexpected error in fetch cycle: {e}", exc_info=True)
                self.state.record_failure()
                outcome = CycleOutcome.FAILED
            finally:
                try:
                    await self.availability.reevaluate()
                except Exception as e:
                    logger.error(f"Availability re-evaluation failed: {e}", exc_info=True)

                self._last_outcome = outcome
                availability = self.state.availability()
                snapshot = self.state.snapshot()
                log_cycle(
                    logger,
                    outcome.value,
                    availability.error_count,
                    availability.is_unavailable,
                    (time.time() - start) * 1000,
                    water_level=snapshot.water_level if snapshot else None,
                    flow_rate=snapshot.flow_rate if snapshot else None,
                )

        return outcome

    async def _cycle(self) -> CycleOutcome:
        try:
            metric_map = build_metric_map(self.sensors)
        except ConfigurationError as e:
            logger.error(str(e))
            self.state.record_failure()
            return CycleOutcome.CONFIGURATION_ERROR

        signal_ids = [metric_map[Metric.LEVEL], metric_map[Metric.FLOWRATE]]
        readings = await self.retry.fetch(signal_ids)
        if readings is None:
            self.state.record_failure()
            return CycleOutcome.NO_DATA

        try:
            validated = validate_readings(readings, metric_map)
        except MalformedDataError as e:
            logger.error(f"Invalid sensor data: {e.message}")
            self.state.record_failure()
            return CycleOutcome.INVALID_DATA

        level = validated[Metric.LEVEL]
        flow = validated[Metric.FLOWRATE]

        try:
            previous = self.state.snapshot()
            last_updated = parse_sensor_datetime(
                level.local_timestamp,
                self.sensor_timezone,
                not_before=previous.last_updated if previous else None,
            )
            self.state.replace_snapshot(
                WaterSnapshot(
                    water_level=level.value,
                    flow_rate=flow.value,
                    last_updated=last_updated,
                    last_fetched=self.clock.now(),
                )
            )
        except MalformedDataError as e:
            logger.error(
                f"Invalid reading timestamp: {e.message}",
                extra={"fecha": level.local_timestamp},
            )
            self.state.record_failure()
            return CycleOutcome.INVALID_TIMESTAMP

        self.state.record_success()

        outcomes = await self.alarm_engine.evaluate_all(
            {Metric.LEVEL: level.value, Metric.FLOWRATE: flow.value}
        )
        if outcomes:
            await self.dispatcher.dispatch(outcomes)

        return CycleOutcome.SUCCESS

    def get_stats(self) -> dict:
        return {
            "cycle_count": self._cycle_count,
            "skipped_count": self._skipped_count,
            "last_outcome": self._last_outcome.value if self._last_outcome else None,
            "is_running": self.is_running,
        }
