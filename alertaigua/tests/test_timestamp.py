"""Sensor-local timestamp parsing"""

from datetime import datetime, timezone

import pytest

from common.exceptions import ConfigurationError, MalformedDataError
from common.timestamp import age_seconds, get_sensor_timezone, parse_sensor_datetime

MADRID = get_sensor_timezone("Europe/Madrid")


def test_summer_time_offset():
    assert parse_sensor_datetime("2025-07-06 14:30:00", MADRID) == datetime(
        2025, 7, 6, 12, 30, tzinfo=timezone.utc
    )


def test_winter_time_offset():
    assert parse_sensor_datetime("2025-01-15 14:30:00", MADRID) == datetime(
        2025, 1, 15, 13, 30, tzinfo=timezone.utc
    )


def test_default_zone_is_madrid():
    assert parse_sensor_datetime("2025-07-06 14:30:00") == datetime(
        2025, 7, 6, 12, 30, tzinfo=timezone.utc
    )


def test_iso_separator_is_accepted():
    assert parse_sensor_datetime("2025-07-06T14:30:00", MADRID).hour == 12


def test_explicit_offset_is_kept():
    parsed = parse_sensor_datetime("2025-07-06T14:30:00+00:00", MADRID)
    assert parsed == datetime(2025, 7, 6, 14, 30, tzinfo=timezone.utc)


def test_result_is_utc():
    assert parse_sensor_datetime("2025-07-06 14:30:00", MADRID).tzinfo == timezone.utc


@pytest.mark.parametrize("value", ["", "   ", "yesterday", "06/07/2025 14:30", None, 1720269000])
def test_bad_input_raises(value):
    with pytest.raises(MalformedDataError):
        parse_sensor_datetime(value, MADRID)


def test_unknown_timezone_is_configuration_error():
    with pytest.raises(ConfigurationError):
        get_sensor_timezone("Mars/Olympus_Mons")


def test_age_seconds():
    now = datetime(2025, 7, 6, 12, 45, tzinfo=timezone.utc)
    assert age_seconds(datetime(2025, 7, 6, 12, 0, tzinfo=timezone.utc), now) == 2700


def test_repeated_autumn_hour_defaults_to_summer_time():
    assert parse_sensor_datetime("2025-10-26 02:15:00", MADRID) == datetime(
        2025, 10, 26, 0, 15, tzinfo=timezone.utc
    )


def test_repeated_autumn_hour_follows_previous_reading():
    after_first_pass = datetime(2025, 10, 26, 0, 45, tzinfo=timezone.utc)

    assert parse_sensor_datetime(
        "2025-10-26 02:00:00", MADRID, not_before=after_first_pass
    ) == datetime(2025, 10, 26, 1, 0, tzinfo=timezone.utc)
    assert parse_sensor_datetime(
        "2025-10-26 02:50:00", MADRID, not_before=after_first_pass
    ) == datetime(2025, 10, 26, 0, 50, tzinfo=timezone.utc)


def test_unambiguous_time_ignores_previous_reading():
    later = datetime(2025, 7, 6, 13, 0, tzinfo=timezone.utc)

    assert parse_sensor_datetime("2025-07-06 14:30:00", MADRID, not_before=later) == datetime(
        2025, 7, 6, 12, 30, tzinfo=timezone.utc
    )
