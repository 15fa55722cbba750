"""
Structured Logging

Every module logs through `get_service_logger(<component>)`. Output goes to
stdout, one JSON object per line by default so the container log driver can
index it. Set ALERTAIGUA_LOG_FORMAT=text for readable local output and
ALERTAIGUA_LOG_LEVEL to change verbosity.

Fields passed through `extra=` land as top-level keys of the JSON line.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "alertaigua"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "service",
}


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": getattr(record, "service", record.name),
            "msg": record.getMessage(),
        }
        payload.update(
            (k, v) for k, v in vars(record).items() if k not in _RECORD_FIELDS
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Stamps the component name on each record, keeping caller extras"""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), "service": self.extra["service"]}
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Configure the `alertaigua.<service_name>` logger.

    Calling it again for the same name replaces the handler rather than
    stacking a second one, so tests and the CLI can reconfigure freely.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))

    logger = logging.getLogger(f"{ROOT_LOGGER}.{service_name}")
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """Logger for one component, configured from the environment"""
    logger = setup_logging(
        service_name,
        log_level=os.environ.get("ALERTAIGUA_LOG_LEVEL", "INFO"),
        json_format=os.environ.get("ALERTAIGUA_LOG_FORMAT", "json").lower() != "text",
    )
    return ServiceLoggerAdapter(logger, {"service": service_name})


def log_alarm_transition(
    logger: logging.Logger,
    subscriber_id: str,
    metric: str,
    previous_state: str,
    new_state: str,
    value: float,
    threshold: float,
) -> None:
    fields = {
        "subscriber_id": subscriber_id,
        "metric": metric,
        "previous_state": previous_state,
        "alarm_state": new_state,
        "value": value,
        "threshold": threshold,
    }
    if previous_state == new_state:
        logger.debug(f"{subscriber_id}: {metric}={value} keeps {new_state}", extra=fields)
    elif new_state == "normal":
        logger.info(f"{subscriber_id}: {metric} back to normal at {value}", extra=fields)
    else:
        logger.warning(
            f"{subscriber_id}: {metric}={value} crossed {threshold}, now {new_state}",
            extra=fields,
        )


def log_cycle(
    logger: logging.Logger,
    outcome: str,
    error_count: int,
    is_unavailable: bool,
    execution_time_ms: float,
    water_level: float | None = None,
    flow_rate: float | None = None,
) -> None:
    """One summary line per fetch cycle, warning level unless it succeeded"""
    fields: dict[str, Any] = {
        "outcome": outcome,
        "error_count": error_count,
        "is_unavailable": is_unavailable,
        "execution_time_ms": round(execution_time_ms, 1),
    }
    if outcome != "success":
        logger.warning(
            f"cycle {outcome}: {error_count} consecutive error(s), "
            f"unavailable={is_unavailable}",
            extra=fields,
        )
        return

    fields.update(water_level=water_level, flow_rate=flow_rate)
    logger.info(
        f"cycle ok in {execution_time_ms:.0f}ms: level {water_level} m, flow {flow_rate} m3/s",
        extra=fields,
    )
