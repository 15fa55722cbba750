"""
Clock and Timestamp Utilities

Supplies the current instant and converts sensor-local timestamps to
canonical UTC instants.

The SAIH Ebro telemetry API reports readings as naive local strings
("YYYY-MM-DD HH:MM:SS") in the basin's timezone. They are interpreted in
that zone (DST aware) and returned as timezone-aware UTC datetimes:

    "2025-07-06 14:30:00" (Europe/Madrid, CEST) -> 2025-07-06T12:30:00+00:00
    "2025-01-15 14:30:00" (Europe/Madrid, CET)  -> 2025-01-15T13:30:00+00:00
"""

import asyncio
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError, MalformedDataError

SENSOR_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_SENSOR_TIMEZONE = "Europe/Madrid"


class Clock:
    """
    Source of time for the poller, availability monitor and status cache.

    Wall-clock instants (`now`) are used for data freshness; the monotonic
    clock is used for cache TTLs so that NTP corrections don't expire or
    extend cached entries.
    """

    def now(self) -> datetime:
        """Current instant (timezone-aware UTC)"""
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def get_sensor_timezone(name: str = DEFAULT_SENSOR_TIMEZONE) -> ZoneInfo:
    """Resolve an IANA timezone name"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone '{name}'") from e


def parse_sensor_datetime(
    value: str,
    tz: ZoneInfo | None = None,
    not_before: datetime | None = None,
) -> datetime:
    """
    Parse a sensor-local timestamp into an aware UTC datetime.

    Accepts the API's "YYYY-MM-DD HH:MM:SS" format and also the ISO "T"
    separator. Strings that already carry an offset keep it.

    Args:
        value: Timestamp string from the telemetry feed
        tz: Sensor timezone (defaults to Europe/Madrid)
        not_before: Last accepted reading time. A wall time repeated by the
            autumn DST change resolves to its first occurrence unless that
            would fall before this instant, then to the second one.

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        MalformedDataError: if the string can't be parsed
    """
    if not isinstance(value, str) or not value.strip():
        raise MalformedDataError(f"Invalid sensor timestamp: {value!r}")

    text = value.strip()
    try:
        parsed = datetime.strptime(text, SENSOR_DATETIME_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedDataError(f"Invalid sensor timestamp: {value!r}") from e

    if parsed.tzinfo is not None:
        return parsed.astimezone(timezone.utc)

    zone = tz or get_sensor_timezone()
    first = parsed.replace(tzinfo=zone, fold=0).astimezone(timezone.utc)
    if not_before is None or first >= not_before:
        return first
    # Second pass through the repeated hour (CET after CEST)
    second = parsed.replace(tzinfo=zone, fold=1).astimezone(timezone.utc)
    return second if second >= not_before else first


def age_seconds(instant: datetime, now: datetime) -> float:
    """Seconds elapsed between an instant and now (negative if in the future)"""
    return (now - instant).total_seconds()
