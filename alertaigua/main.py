#!/usr/bin/env python3
"""
AlertAigua - Flood Warning Service Entry Point

Polls the SAIH Ebro river sensors every five minutes, keeps each
subscriber's alarm state and pushes warnings through Pushsafer.

Usage:
    alertaigua                      # /etc/alertaigua/config.yaml or ./config.yaml
    alertaigua -c /etc/aa.yaml      # explicit config file
    alertaigua --once               # one fetch cycle, exit 0 on success
    alertaigua --dry-run            # validate, show settings, exit
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

import yaml

from common.config import ServiceConfig, load_service_config
from common.exceptions import ConfigurationError

VERSION = "1.0.0"
# Tried in order when --config is not given
CONFIG_SEARCH = ("/etc/alertaigua/config.yaml", "config.yaml")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_CYCLE_FAILED = 2

ENV_HELP = """
Secrets may come from the environment instead of the file:
  SAIHEBRO_API_BASE_URL, SAIHEBRO_API_KEY,
  SUPABASE_URL, SUPABASE_SERVICE_KEY, PUSHSAFER_PRIVATE_KEY
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alertaigua",
        description="River level and flow alerts for SAIH Ebro sensors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=ENV_HELP,
    )
    parser.add_argument("-c", "--config",
                        help="YAML config file (default: first of "
                             + ", ".join(CONFIG_SEARCH) + ")")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true",
                      help="run a single fetch cycle and exit")
    mode.add_argument("--dry-run", action="store_true",
                      help="check the configuration and exit")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="debug level, human readable logs")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {VERSION}")
    return parser


def locate_config() -> str | None:
    for candidate in CONFIG_SEARCH:
        if Path(candidate).is_file():
            return candidate
    return None


def read_config_file(config_path: str | None) -> dict:
    """
    Parse the YAML config file into a dict.

    With no path at all everything comes from defaults and the environment.
    A path that does not exist is an error.
    """
    if config_path is None:
        return {}

    path = Path(config_path)
    if not path.is_file():
        raise ConfigurationError(f"config file {config_path} does not exist")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{config_path} is not valid YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    return raw


def _mask(secret: str) -> str:
    if not secret:
        return "(unset)"
    return secret[:4] + "…" if len(secret) > 8 else "****"


def describe(config: ServiceConfig) -> list[str]:
    """Settings summary shown before the service starts"""
    fetch = config.fetch
    lines = ["AlertAigua " + VERSION, ""]
    lines += [
        f"  sensor {s.id:<10} {s.metric.value:<9} {s.unit:<5} {s.name}"
        for s in config.sensors
    ]
    lines += [
        "",
        f"  every {fetch.interval_s}s, {fetch.max_retries} attempts, "
        f"backoff {fetch.initial_backoff_ms}ms doubling "
        f"(worst case {fetch.worst_case_wait_s():.0f}s)",
        f"  escalate at +{config.alarm.delta_percentage}%, "
        f"clear after {config.alarm.clear_count} readings below threshold",
        f"  unavailable after {config.availability.error_threshold} errors "
        f"or {config.availability.age_threshold_s}s without fresh data",
        "",
        f"  sensor api     {config.sensor_api.base_url or '(unset)'}",
        f"  sensor key     {_mask(config.sensor_api.api_key)}",
        f"  subscribers    {config.cloud.url or '(unset)'}",
        f"  pushsafer key  {_mask(config.pushsafer.private_key)}",
        f"  diagnostics    http://{config.health_host}:{config.health_port}/health",
    ]
    return lines


async def run_once(config: ServiceConfig) -> str:
    """Run a single fetch cycle and close every client"""
    from services.water.service import WaterService

    service = WaterService(config)
    try:
        outcome = await service.poller.run_once()
    finally:
        await service.stop()
    return outcome.value


async def run_forever(config: ServiceConfig) -> None:
    from services.water.service import WaterService

    service = WaterService(config)
    try:
        await service.start()
    finally:
        await service.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Loggers read these when the service modules are imported
    if args.verbose:
        os.environ["ALERTAIGUA_LOG_LEVEL"] = "DEBUG"
        os.environ.setdefault("ALERTAIGUA_LOG_FORMAT", "text")

    from services.config.validator import ConfigValidator

    try:
        config_path = args.config or locate_config()
        config = load_service_config(read_config_file(config_path))
    except ConfigurationError as e:
        print(f"alertaigua: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    ok, errors = ConfigValidator().validate(config)
    if not ok:
        print("alertaigua: invalid configuration", file=sys.stderr)
        for error in errors:
            print(f"  * {error}", file=sys.stderr)
        return EXIT_CONFIG

    print("\n".join(describe(config)), end="\n\n")

    if args.dry_run:
        print("configuration ok")
        return EXIT_OK

    if args.once:
        outcome = asyncio.run(run_once(config))
        print(f"cycle outcome: {outcome}")
        return EXIT_OK if outcome == "success" else EXIT_CYCLE_FAILED

    try:
        asyncio.run(run_forever(config))
    except KeyboardInterrupt:
        pass
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
