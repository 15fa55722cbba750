"""
Configuration Validator

Validates the resolved service configuration before the service starts.
"""

from urllib.parse import urlparse

from common.config import Metric, ServiceConfig
from common.logging_setup import get_service_logger

logger = get_service_logger("config.validator")

# Longest acceptable total backoff sleep within one fetch cycle
MAX_RETRY_WAIT_S = 60.0


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ConfigValidator:
    """Validates AlertAigua configuration"""

    def validate(self, config: ServiceConfig) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Args:
            config: Resolved service configuration

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors: list[str] = []

        errors.extend(self._validate_sensors(config))
        errors.extend(self._validate_fetch(config))
        errors.extend(self._validate_alarm(config))
        errors.extend(self._validate_availability(config))
        errors.extend(self._validate_endpoints(config))

        if not 0 < config.health_port < 65536:
            errors.append(f"Invalid health_port: {config.health_port}")

        is_valid = len(errors) == 0

        if not is_valid:
            logger.warning(
                f"Config validation failed: {len(errors)} errors",
                extra={"errors": errors},
            )
        else:
            logger.debug("Config validation passed")

        return is_valid, errors

    def _validate_sensors(self, config: ServiceConfig) -> list[str]:
        errors = []
        for metric in Metric:
            count = len(config.get_sensors_by_metric(metric))
            if count == 0:
                errors.append(f"No sensor configured for metric '{metric.value}'")
            elif count > 1:
                errors.append(f"More than one sensor configured for metric '{metric.value}'")

        ids = [s.id for s in config.sensors]
        if len(ids) != len(set(ids)):
            errors.append("Duplicate sensor ids")
        return errors

    def _validate_fetch(self, config: ServiceConfig) -> list[str]:
        errors = []
        fetch = config.fetch

        if fetch.interval_s <= 0:
            errors.append("fetch.interval_s must be positive")
        if fetch.max_retries < 1:
            errors.append("fetch.max_retries must be at least 1")
        if fetch.initial_backoff_ms < 0:
            errors.append("fetch.initial_backoff_ms cannot be negative")
        if fetch.timeout_s <= 0:
            errors.append("fetch.timeout_s must be positive")

        # Not an error: the lock is simply held longer
        worst_case = fetch.worst_case_wait_s()
        if worst_case > MAX_RETRY_WAIT_S:
            logger.warning(
                f"Worst-case retry wait is {worst_case:.0f}s (> {MAX_RETRY_WAIT_S:.0f}s)",
                extra={
                    "max_retries": fetch.max_retries,
                    "initial_backoff_ms": fetch.initial_backoff_ms,
                },
            )
        if worst_case >= fetch.interval_s:
            errors.append(
                f"Worst-case retry wait ({worst_case:.0f}s) must be shorter than the poll interval"
            )
        return errors

    def _validate_alarm(self, config: ServiceConfig) -> list[str]:
        errors = []
        if config.alarm.delta_percentage <= 0:
            errors.append("alarm.delta_percentage must be positive")
        if config.alarm.clear_count < 1:
            errors.append("alarm.clear_count must be at least 1")
        return errors

    def _validate_availability(self, config: ServiceConfig) -> list[str]:
        errors = []
        availability = config.availability
        if availability.error_threshold < 1:
            errors.append("availability.error_threshold must be at least 1")
        if availability.age_threshold_s <= 0:
            errors.append("availability.age_threshold_s must be positive")
        if availability.fetch_fresh_s <= 0:
            errors.append("availability.fetch_fresh_s must be positive")
        if config.status.cache_ttl_s < 0:
            errors.append("status.cache_ttl_s cannot be negative")
        return errors

    def _validate_endpoints(self, config: ServiceConfig) -> list[str]:
        errors = []

        if not _is_http_url(config.sensor_api.base_url):
            errors.append("Missing or invalid sensor_api.base_url (SAIHEBRO_API_BASE_URL)")
        if not config.sensor_api.api_key:
            errors.append("Missing sensor_api.api_key (SAIHEBRO_API_KEY)")

        if not _is_http_url(config.cloud.url):
            errors.append("Missing or invalid cloud.url (SUPABASE_URL)")
        if not config.cloud.key:
            errors.append("Missing cloud.key (SUPABASE_SERVICE_KEY)")

        if not config.pushsafer.private_key:
            errors.append("Missing pushsafer.private_key (PUSHSAFER_PRIVATE_KEY)")
        if not _is_http_url(config.pushsafer.api_url):
            errors.append("Invalid pushsafer.api_url")

        if not _is_http_url(config.status.status_page_url):
            errors.append("Invalid status.status_page_url")
        return errors
