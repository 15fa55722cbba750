"""
Configuration Dataclasses

Type-safe configuration structures for the AlertAigua service.
Values come from a YAML file; secrets may be overridden from the environment.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ConfigurationError


class Metric(str, Enum):
    """Tracked measurement kinds"""
    LEVEL = "level"
    FLOWRATE = "flowrate"


class AlarmState(str, Enum):
    """Per-subscriber alarm ring (no terminal state)"""
    NORMAL = "normal"
    INITIAL_ALARM = "initialAlarm"
    ESCALATION_ALARM = "escalationAlarm"


METRIC_UNITS: dict[Metric, str] = {
    Metric.LEVEL: "m",
    Metric.FLOWRATE: "m³/s",
}

DEFAULT_STATUS_PAGE_URL = "https://pushsafer.statuspage.io/api/v2/summary.json"
DEFAULT_PUSHSAFER_API_URL = "https://www.pushsafer.com/api"
DEFAULT_SENSOR_URL = "https://www.saihebro.com"


@dataclass
class SensorDefinition:
    """Upstream signal mapped to a metric"""
    id: str
    metric: Metric
    name: str = ""
    unit: str = ""
    description: str = ""


@dataclass
class FetchSettings:
    """Polling and retry policy"""
    interval_s: int = 300
    max_retries: int = 5
    initial_backoff_ms: int = 1000  # doubles after each failed attempt
    timeout_s: float = 30.0
    verify_tls: bool = False  # upstream serves an incomplete certificate chain
    run_on_start: bool = True

    def worst_case_wait_s(self) -> float:
        """Total sleep across a fully failed cycle (no sleep after the last attempt)"""
        if self.max_retries <= 1:
            return 0.0
        return self.initial_backoff_ms * (2 ** (self.max_retries - 1) - 1) / 1000.0


@dataclass
class AlarmSettings:
    """Escalation and hysteresis parameters"""
    delta_percentage: float = 5.0
    clear_count: int = 48  # 48 polls at 5 min = 4 hours below threshold


@dataclass
class AvailabilitySettings:
    """Service-degraded thresholds"""
    error_threshold: int = 3
    age_threshold_s: int = 45 * 60
    fetch_fresh_s: int = 15 * 60


@dataclass
class StatusSettings:
    """Third-party status page polling"""
    cache_ttl_s: float = 45.0
    status_page_url: str = DEFAULT_STATUS_PAGE_URL
    timeout_s: float = 10.0


@dataclass
class SensorApiSettings:
    """SAIH Ebro telemetry endpoint"""
    base_url: str = ""
    api_key: str = ""


@dataclass
class PushsaferSettings:
    """Push notification transport"""
    private_key: str = ""
    api_url: str = DEFAULT_PUSHSAFER_API_URL
    sensor_url: str = DEFAULT_SENSOR_URL
    timeout_s: float = 10.0


@dataclass
class CloudSettings:
    """Subscriber persistence (Supabase REST)"""
    url: str = ""
    key: str = ""


@dataclass
class ServiceConfig:
    """Complete service configuration"""
    timezone: str = "Europe/Madrid"
    health_host: str = "127.0.0.1"
    health_port: int = 8090
    log_level: str = "INFO"

    sensors: list[SensorDefinition] = field(default_factory=lambda: default_sensors())
    fetch: FetchSettings = field(default_factory=FetchSettings)
    alarm: AlarmSettings = field(default_factory=AlarmSettings)
    availability: AvailabilitySettings = field(default_factory=AvailabilitySettings)
    status: StatusSettings = field(default_factory=StatusSettings)
    sensor_api: SensorApiSettings = field(default_factory=SensorApiSettings)
    pushsafer: PushsaferSettings = field(default_factory=PushsaferSettings)
    cloud: CloudSettings = field(default_factory=CloudSettings)

    def get_sensors_by_metric(self, metric: Metric) -> list[SensorDefinition]:
        """Get all sensors configured for a metric"""
        return [s for s in self.sensors if s.metric == metric]


def default_sensors() -> list[SensorDefinition]:
    """Horta de Sant Joan station on the Algars river"""
    return [
        SensorDefinition(
            id="A153C01NRIO1",
            metric=Metric.LEVEL,
            name="NIVEL ALGAS EN HORTA DE S.JUAN",
            unit="m",
            description="Water level in meters",
        ),
        SensorDefinition(
            id="A153C65QRIO1",
            metric=Metric.FLOWRATE,
            name="CAUDAL EN HORTA DE S.JUAN",
            unit="m³/s",
            description="Flow rate in cubic meters per second",
        ),
    ]


def build_metric_map(sensors: list[SensorDefinition]) -> dict[Metric, str]:
    """
    Map each metric to its single signal id.

    Raises:
        ConfigurationError: if a metric has no sensor or more than one
    """
    metric_map: dict[Metric, str] = {}
    for metric in Metric:
        ids = [s.id for s in sensors if s.metric == metric and s.id]
        if not ids:
            raise ConfigurationError(f"No sensor defined for metric '{metric.value}'")
        if len(ids) > 1:
            raise ConfigurationError(
                f"Expected one sensor for metric '{metric.value}', got {len(ids)}: {ids}"
            )
        metric_map[metric] = ids[0]
    return metric_map


def load_service_config(data: dict[str, Any] | None, env: dict[str, str] | None = None) -> ServiceConfig:
    """
    Load ServiceConfig from dictionary (e.g., parsed YAML).

    Environment variables override secrets and endpoints so that the YAML
    file can be committed without credentials.
    """
    data = data or {}
    env = os.environ if env is None else env

    sensors_data = data.get("sensors")
    if sensors_data is None:
        sensors = default_sensors()
    else:
        try:
            sensors = [
                SensorDefinition(
                    id=s["id"],
                    metric=Metric(s["metric"]),
                    name=s.get("name", ""),
                    unit=s.get("unit", ""),
                    description=s.get("description", ""),
                )
                for s in sensors_data
            ]
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid sensor definition: {e}") from e

    fetch_data = data.get("fetch", {})
    fetch = FetchSettings(
        interval_s=fetch_data.get("interval_s", 300),
        max_retries=fetch_data.get("max_retries", 5),
        initial_backoff_ms=fetch_data.get("initial_backoff_ms", 1000),
        timeout_s=fetch_data.get("timeout_s", 30.0),
        verify_tls=fetch_data.get("verify_tls", False),
        run_on_start=fetch_data.get("run_on_start", True),
    )

    alarm_data = data.get("alarm", {})
    alarm = AlarmSettings(
        delta_percentage=alarm_data.get("delta_percentage", 5.0),
        clear_count=alarm_data.get("clear_count", 48),
    )

    availability_data = data.get("availability", {})
    availability = AvailabilitySettings(
        error_threshold=availability_data.get("error_threshold", 3),
        age_threshold_s=availability_data.get("age_threshold_s", 45 * 60),
        fetch_fresh_s=availability_data.get("fetch_fresh_s", 15 * 60),
    )

    status_data = data.get("status", {})
    status = StatusSettings(
        cache_ttl_s=status_data.get("cache_ttl_s", 45.0),
        status_page_url=status_data.get("status_page_url", DEFAULT_STATUS_PAGE_URL),
        timeout_s=status_data.get("timeout_s", 10.0),
    )

    sensor_api_data = data.get("sensor_api", {})
    sensor_api = SensorApiSettings(
        base_url=env.get("SAIHEBRO_API_BASE_URL") or sensor_api_data.get("base_url", ""),
        api_key=env.get("SAIHEBRO_API_KEY") or sensor_api_data.get("api_key", ""),
    )

    pushsafer_data = data.get("pushsafer", {})
    pushsafer = PushsaferSettings(
        private_key=env.get("PUSHSAFER_PRIVATE_KEY") or pushsafer_data.get("private_key", ""),
        api_url=pushsafer_data.get("api_url", DEFAULT_PUSHSAFER_API_URL),
        sensor_url=pushsafer_data.get("sensor_url", DEFAULT_SENSOR_URL),
        timeout_s=pushsafer_data.get("timeout_s", 10.0),
    )

    cloud_data = data.get("cloud", {})
    cloud = CloudSettings(
        url=env.get("SUPABASE_URL") or cloud_data.get("url", ""),
        key=env.get("SUPABASE_SERVICE_KEY") or cloud_data.get("key", ""),
    )

    service_data = data.get("service", {})
    return ServiceConfig(
        timezone=service_data.get("timezone", "Europe/Madrid"),
        health_host=service_data.get("health_host", "127.0.0.1"),
        health_port=service_data.get("health_port", 8090),
        log_level=service_data.get("log_level", "INFO"),
        sensors=sensors,
        fetch=fetch,
        alarm=alarm,
        availability=availability,
        status=status,
        sensor_api=sensor_api,
        pushsafer=pushsafer,
        cloud=cloud,
    )
