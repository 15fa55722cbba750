"""Fetch cycle: mutual exclusion, failure accounting, dispatch and availability"""

import asyncio
import math
from datetime import datetime, timedelta, timezone

import pytest

from common.config import (
    AlarmSettings,
    AlarmState,
    AvailabilitySettings,
    Metric,
    SensorDefinition,
    default_sensors,
)
from common.exceptions import NetworkError
from common.state import StateStore
from common.timestamp import get_sensor_timezone
from services.notify.dispatcher import AlertDispatcher
from services.notify.pushsafer import Notifier, Severity
from services.water.alarm_engine import AlarmEngine
from services.water.availability import AvailabilityMonitor
from services.water.gateway import SensorReading
from services.water.poller import CycleOutcome, WaterDataPoller
from services.water.retry import RetryController
from tests.helpers import (
    FLOW_ID,
    LEVEL_ID,
    FakeClock,
    FakeTransport,
    InMemorySubscriberStore,
    ScriptedGateway,
    make_subscriber,
    readings,
)

UNAVAILABLE_TITLE = "Service Temporarily Unavailable"
RESTORED_TITLE = "Service Restored"


class Harness:
    def __init__(self, gateway, subscribers=(), sensors=None, error_threshold=3, max_attempts=5,
                 clock=None):
        self.clock = clock or FakeClock()
        self.gateway = gateway
        self.store = InMemorySubscriberStore(list(subscribers))
        self.transport = FakeTransport()
        self.state = StateStore()
        self.dispatcher = AlertDispatcher(
            self.store,
            Notifier(self.transport, self.store),
            now=self.clock.now,
            sensor_url="https://www.saihebro.com",
        )
        self.availability = AvailabilityMonitor(
            self.state,
            self.dispatcher,
            AvailabilitySettings(error_threshold=error_threshold, age_threshold_s=2700),
            self.clock,
        )
        self.retry = RetryController(gateway, self.clock.sleep, max_attempts=max_attempts)
        self.poller = WaterDataPoller(
            sensors=sensors if sensors is not None else default_sensors(),
            retry=self.retry,
            state=self.state,
            alarm_engine=AlarmEngine(self.store, AlarmSettings()),
            dispatcher=self.dispatcher,
            availability=self.availability,
            clock=self.clock,
            sensor_timezone=get_sensor_timezone("Europe/Madrid"),
        )

    def sent_titles(self):
        return [m["title"] for m in self.transport.sent]


@pytest.mark.asyncio
async def test_successful_cycle_replaces_snapshot():
    h = Harness(ScriptedGateway(readings(level=1.2, flow=3.4)))

    outcome = await h.poller.run_once()

    assert outcome == CycleOutcome.SUCCESS
    snapshot = h.state.snapshot()
    assert snapshot.water_level == 1.2
    assert snapshot.flow_rate == 3.4
    # 13:55 CEST
    assert snapshot.last_updated == datetime(2025, 7, 6, 11, 55, tzinfo=timezone.utc)
    assert snapshot.last_fetched == h.clock.now()
    assert h.state.availability().error_count == 0
    assert h.gateway.calls == [[LEVEL_ID, FLOW_ID]]


@pytest.mark.asyncio
async def test_overlapping_trigger_is_skipped_without_gateway_call():
    gateway = ScriptedGateway(readings())
    gateway.gate = asyncio.Event()
    h = Harness(gateway)

    first = asyncio.create_task(h.poller.run_once())
    await gateway.entered.wait()

    assert h.poller.is_running
    assert await h.poller.run_once() == CycleOutcome.SKIPPED
    assert len(gateway.calls) == 1

    gateway.gate.set()
    assert await first == CycleOutcome.SUCCESS
    assert len(gateway.calls) == 1
    assert h.poller.get_stats()["skipped_count"] == 1


@pytest.mark.asyncio
async def test_retry_exhaustion_counts_one_error_per_cycle():
    h = Harness(ScriptedGateway(NetworkError("timeout")), max_attempts=5)

    outcome = await h.poller.run_once()

    assert outcome == CycleOutcome.NO_DATA
    assert len(h.gateway.calls) == 5
    assert h.state.availability().error_count == 1


@pytest.mark.asyncio
async def test_missing_signal_is_invalid_data():
    h = Harness(ScriptedGateway(readings()[:1]), max_attempts=1)

    assert await h.poller.run_once() == CycleOutcome.INVALID_DATA
    assert h.state.snapshot() is None
    assert h.state.availability().error_count == 1


@pytest.mark.asyncio
async def test_duplicate_signal_is_invalid_data():
    h = Harness(ScriptedGateway(readings() + readings()[:1]))

    assert await h.poller.run_once() == CycleOutcome.INVALID_DATA
    assert h.state.availability().error_count == 1


@pytest.mark.asyncio
async def test_non_finite_value_is_invalid_data():
    h = Harness(ScriptedGateway(readings(level=math.nan)))

    assert await h.poller.run_once() == CycleOutcome.INVALID_DATA


@pytest.mark.asyncio
async def test_unparseable_timestamp_is_invalid_timestamp():
    h = Harness(ScriptedGateway(readings(fecha="06/07/2025 13:55")))

    assert await h.poller.run_once() == CycleOutcome.INVALID_TIMESTAMP
    assert h.state.snapshot() is None
    assert h.state.availability().error_count == 1


@pytest.mark.asyncio
async def test_reading_time_going_backwards_is_invalid_timestamp():
    gateway = ScriptedGateway(readings(fecha="2025-07-06 13:55:00"))
    h = Harness(gateway)
    await h.poller.run_once()

    gateway.script = [readings(level=9.0, fecha="2025-07-06 13:00:00")]
    assert await h.poller.run_once() == CycleOutcome.INVALID_TIMESTAMP
    assert h.state.snapshot().water_level == 1.0


@pytest.mark.asyncio
async def test_ambiguous_sensor_mapping_is_configuration_error():
    sensors = default_sensors() + [SensorDefinition(id="OTHER", metric=Metric.LEVEL)]
    h = Harness(ScriptedGateway(readings()), sensors=sensors)

    assert await h.poller.run_once() == CycleOutcome.CONFIGURATION_ERROR
    assert h.gateway.calls == []
    assert h.state.availability().error_count == 1


@pytest.mark.asyncio
async def test_unexpected_error_is_counted_and_contained():
    h = Harness(ScriptedGateway(KeyError("bug")))

    assert await h.poller.run_once() == CycleOutcome.FAILED
    assert h.state.availability().error_count == 1
    assert not h.poller.is_running


@pytest.mark.asyncio
async def test_alarm_is_dispatched_with_critical_severity():
    h = Harness(ScriptedGateway(readings(level=1.6)), [make_subscriber("u1", threshold=1.5)])

    await h.poller.run_once()

    subscriber = h.store.get("u1")
    assert subscriber.alarm_state == AlarmState.INITIAL_ALARM
    assert subscriber.last_warned_at == h.clock.now()
    assert len(h.transport.sent) == 1
    assert h.transport.sent[0]["severity"] == Severity.CRITICAL
    assert h.transport.sent[0]["url"] == "https://www.saihebro.com"
    assert h.store.notifications[0].type == "initialAlarm"
    assert h.store.notifications[0].success


@pytest.mark.asyncio
async def test_subscriber_failure_does_not_abort_batch():
    subscribers = [make_subscriber(sid, threshold=1.5) for sid in ("a", "b", "c")]
    h = Harness(ScriptedGateway(readings(level=1.6)), subscribers)
    h.store.fail_update_for = {"b"}

    assert await h.poller.run_once() == CycleOutcome.SUCCESS

    assert [m["device_id"] for m in h.transport.sent] == ["dev-a", "dev-c"]
    assert h.store.get("b").alarm_state == AlarmState.NORMAL


@pytest.mark.asyncio
async def test_muted_subscriber_is_tracked_but_not_notified():
    muted = make_subscriber("u1", threshold=1.5)
    h = Harness(ScriptedGateway(readings(level=1.6)), [muted])
    h.store.subscribers["u1"].muted_until = h.clock.now() + timedelta(hours=3)

    await h.poller.run_once()

    assert h.store.get("u1").alarm_state == AlarmState.INITIAL_ALARM
    assert h.transport.sent == []


@pytest.mark.asyncio
async def test_availability_flips_once_each_way():
    gateway = ScriptedGateway(readings())
    subscribers = [make_subscriber("a"), make_subscriber("b")]
    h = Harness(gateway, subscribers, error_threshold=3)

    assert await h.poller.run_once() == CycleOutcome.SUCCESS
    assert h.transport.sent == []

    gateway.script = [NetworkError("down")]
    await h.poller.run_once()
    await h.poller.run_once()
    assert not h.state.availability().is_unavailable
    assert h.sent_titles() == []

    # Third consecutive failure reaches the threshold exactly
    await h.poller.run_once()
    assert h.state.availability().error_count == 3
    assert h.state.availability().is_unavailable
    assert h.sent_titles() == [UNAVAILABLE_TITLE, UNAVAILABLE_TITLE]

    await h.poller.run_once()
    assert h.sent_titles().count(UNAVAILABLE_TITLE) == 2

    gateway.script = [readings()]
    assert await h.poller.run_once() == CycleOutcome.SUCCESS
    assert h.state.availability().error_count == 0
    assert not h.state.availability().is_unavailable
    assert h.sent_titles()[-2:] == [RESTORED_TITLE, RESTORED_TITLE]
    assert len(h.transport.sent) == 4


@pytest.mark.asyncio
async def test_stale_reading_marks_service_unavailable():
    h = Harness(ScriptedGateway(readings(fecha="2025-07-06 12:00:00")), [make_subscriber("a")])

    # 10:00Z reading at 12:00Z is two hours old
    assert await h.poller.run_once() == CycleOutcome.SUCCESS
    assert h.state.availability().error_count == 0
    assert h.state.availability().is_unavailable
    assert h.sent_titles() == [UNAVAILABLE_TITLE]


@pytest.mark.asyncio
async def test_broadcast_failure_still_flips_flag():
    h = Harness(ScriptedGateway(NetworkError("down")), [make_subscriber("a")], error_threshold=1)
    h.store.fail_find_many = True

    await h.poller.run_once()

    assert h.state.availability().is_unavailable
    assert h.transport.sent == []


def test_reading_fixture_matches_default_sensors():
    ids = {s.id for s in default_sensors()}
    assert {r.signal_id for r in readings()} == ids
    assert isinstance(readings()[0], SensorReading)


@pytest.mark.asyncio
async def test_repeated_autumn_hour_is_accepted_as_newer_data():
    clock = FakeClock(datetime(2025, 10, 26, 0, 50, tzinfo=timezone.utc))
    h = Harness(
        ScriptedGateway(
            readings(fecha="2025-10-26 02:45:00"),
            readings(fecha="2025-10-26 02:00:00"),
            readings(fecha="2025-10-26 02:15:00"),
        ),
        subscribers=[make_subscriber("u1", threshold=1.5)],
        clock=clock,
    )

    outcomes = []
    for _ in range(3):
        outcomes.append(await h.poller.run_once())
        clock.advance(15 * 60)

    assert outcomes == [CycleOutcome.SUCCESS] * 3
    assert h.state.snapshot().last_updated == datetime(2025, 10, 26, 1, 15, tzinfo=timezone.utc)
    assert h.state.availability().error_count == 0
    assert h.transport.sent == []
