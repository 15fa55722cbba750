"""
Common Utilities

Shared modules used across all services:
- state.py - In-process water snapshot and availability state
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- timestamp.py - Clock and sensor-local time parsing
- scheduler.py - Wall-clock aligned periodic loop
"""

from .state import StateStore, WaterSnapshot, AvailabilityState
from .config import (
    ServiceConfig,
    SensorDefinition,
    FetchSettings,
    AlarmSettings,
    AvailabilitySettings,
    StatusSettings,
    Metric,
    AlarmState,
    build_metric_map,
    load_service_config,
)
from .exceptions import (
    AlertAiguaError,
    ConfigurationError,
    TransportError,
    NetworkError,
    MalformedDataError,
    MalformedResponseError,
    PersistenceError,
    NotificationError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_alarm_transition,
    log_cycle,
)

__all__ = [
    # State
    "StateStore",
    "WaterSnapshot",
    "AvailabilityState",
    # Config
    "ServiceConfig",
    "SensorDefinition",
    "FetchSettings",
    "AlarmSettings",
    "AvailabilitySettings",
    "StatusSettings",
    "Metric",
    "AlarmState",
    "build_metric_map",
    "load_service_config",
    # Exceptions
    "AlertAiguaError",
    "ConfigurationError",
    "TransportError",
    "NetworkError",
    "MalformedDataError",
    "MalformedResponseError",
    "PersistenceError",
    "NotificationError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_alarm_transition",
    "log_cycle",
]
