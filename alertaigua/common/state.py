"""
Water State Store

In-process container for the latest validated reading pair and the
service-availability bookkeeping.

The poller is the single writer (it holds its cycle lock while writing).
Request handlers read concurrently through `snapshot()` and
`availability()`, which hand out frozen dataclasses: a reader always sees
one whole record, never fields from two different cycles.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .exceptions import MalformedDataError


@dataclass(frozen=True)
class WaterSnapshot:
    """Latest validated reading pair"""
    water_level: float  # m
    flow_rate: float  # m³/s
    last_updated: datetime  # captured upstream (sensor clock)
    last_fetched: datetime  # captured by this process

    def to_dict(self) -> dict[str, Any]:
        return {
            "water_level": self.water_level,
            "flow_rate": self.flow_rate,
            "last_updated": self.last_updated.isoformat(),
            "last_fetched": self.last_fetched.isoformat(),
        }


@dataclass(frozen=True)
class AvailabilityState:
    """Error counter and degraded flag"""
    error_count: int = 0
    is_unavailable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_count": self.error_count,
            "is_unavailable": self.is_unavailable,
        }


class StateStore:
    """
    Owned state for one AlertAigua process.

    Each mutator replaces a whole frozen record, so there is nothing to
    lock for readers.
    """

    def __init__(self):
        self._snapshot: WaterSnapshot | None = None
        self._availability = AvailabilityState()

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> WaterSnapshot | None:
        return self._snapshot

    def availability(self) -> AvailabilityState:
        return self._availability

    # ------------------------------------------------------------------
    # Writers (poller / availability monitor only)
    # ------------------------------------------------------------------

    def replace_snapshot(self, snapshot: WaterSnapshot) -> None:
        """
        Atomically replace the snapshot.

        Raises:
            MalformedDataError: if either instant would move backwards
        """
        current = self._snapshot
        if current is not None:
            if snapshot.last_updated < current.last_updated:
                raise MalformedDataError(
                    f"Reading time went backwards: {snapshot.last_updated.isoformat()} "
                    f"< {current.last_updated.isoformat()}"
                )
            if snapshot.last_fetched < current.last_fetched:
                raise MalformedDataError(
                    f"Fetch time went backwards: {snapshot.last_fetched.isoformat()} "
                    f"< {current.last_fetched.isoformat()}"
                )
        self._snapshot = snapshot

    def record_failure(self) -> int:
        """Count one failed cycle; returns the new error count"""
        current = self._availability
        self._availability = AvailabilityState(
            error_count=current.error_count + 1,
            is_unavailable=current.is_unavailable,
        )
        return self._availability.error_count

    def record_success(self) -> None:
        """Reset the error counter after a fully successful cycle"""
        current = self._availability
        if current.error_count:
            self._availability = AvailabilityState(
                error_count=0,
                is_unavailable=current.is_unavailable,
            )

    def set_unavailable(self, is_unavailable: bool) -> None:
        current = self._availability
        self._availability = AvailabilityState(
            error_count=current.error_count,
            is_unavailable=is_unavailable,
        )

    def to_dict(self) -> dict[str, Any]:
        """Diagnostics view"""
        snapshot = self._snapshot
        return {
            "water": snapshot.to_dict() if snapshot else None,
            **self._availability.to_dict(),
        }
