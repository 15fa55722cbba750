"""
Wall-Clock Aligned Scheduler

Drives the water fetch cycle. A 300 s interval fires at :00, :05, :10...
of every hour, the way a `*/5` cron entry would, optionally with one extra
run as soon as the loop starts.

Firing rules:
- The next firing is always the next boundary strictly after "now", so a
  cycle that overruns one or more boundaries drops them instead of
  queueing catch-up runs
- A callback error is logged and the loop carries on
- A wall-clock jump (NTP step, suspend/resume) realigns silently

Usage:
    loop = ScheduledLoop(300, poller.run_once, name="water_fetch", run_immediately=True)
    await loop.start()
    ...
    loop.stop()
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

from common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")

# Lateness beyond this is treated as a clock jump, not scheduling drift
CLOCK_JUMP_S = 30.0


def next_boundary(now: float, interval: float) -> float:
    """First multiple of `interval` strictly after `now` (epoch seconds)"""
    return (now // interval + 1) * interval


class ScheduledLoop:
    """
    Periodic async callback aligned to wall-clock boundaries.

    Attributes:
        interval: Seconds between boundaries
        callback: Coroutine function run at each boundary
        name: Label used in logs and stats
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[Any]],
        name: str = "unnamed",
        run_immediately: bool = False,
        time_fn: Callable[[], float] = time.time,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately
        self._time = time_fn

        self._task: asyncio.Task | None = None
        self._due: float = 0.0

        self._runs = 0
        self._failures = 0
        self._dropped = 0
        self._lateness_total = 0.0
        self._lateness_last = 0.0
        self._last_duration = 0.0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"scheduler:{self.name}")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _fire(self) -> None:
        started = self._time()
        try:
            await self.callback()
            self._runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failures += 1
            logger.error(f"Scheduled callback '{self.name}' failed: {e}", exc_info=True)
        finally:
            self._last_duration = self._time() - started

    async def _run(self) -> None:
        if self.run_immediately:
            await self._fire()

        self._due = next_boundary(self._time(), self.interval)

        while True:
            delay = self._due - self._time()
            if delay > 0:
                await asyncio.sleep(delay)

            lateness = self._time() - self._due
            if lateness > CLOCK_JUMP_S:
                logger.info(
                    f"Scheduler '{self.name}' realigning after clock jump of {lateness:.0f}s"
                )
                self._lateness_last = 0.0
            else:
                self._lateness_last = max(0.0, lateness)
                self._lateness_total += self._lateness_last

            await self._fire()

            following = next_boundary(max(self._time(), self._due), self.interval)
            missed = int(round((following - self._due) / self.interval)) - 1
            if missed > 0:
                self._dropped += missed
                logger.warning(
                    f"Scheduler '{self.name}' dropped {missed} firing(s); "
                    f"last run took {self._last_duration:.1f}s"
                )
            self._due = following

    @property
    def execution_count(self) -> int:
        """Callbacks that completed without raising"""
        return self._runs

    @property
    def skipped_count(self) -> int:
        """Boundaries dropped because a run overran them"""
        return self._dropped

    @property
    def drift_seconds(self) -> float:
        return self._lateness_total

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "interval_s": self.interval,
            "execution_count": self._runs,
            "failure_count": self._failures,
            "skipped_count": self._dropped,
            "drift_total_s": round(self._lateness_total, 3),
            "drift_last_ms": round(self._lateness_last * 1000, 1),
            "last_execution_s": round(self._last_duration, 3),
        }
