"""Test doubles: in-memory subscriber store, fake clock, fake transport, scripted gateway"""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any

from common.config import AlarmState, Metric
from common.exceptions import PersistenceError
from services.water.gateway import SensorReading
from storage.subscribers import NotificationRecord, Subscriber

LEVEL_ID = "A153C01NRIO1"
FLOW_ID = "A153C65QRIO1"


class FakeClock:
    """Manually advanced clock; sleep() records and advances instead of waiting"""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2025, 7, 6, 12, 0, tzinfo=timezone.utc)
        self._monotonic = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class InMemorySubscriberStore:
    """Same operations as SupabaseSubscriberStore, backed by a dict"""

    def __init__(self, subscribers: list[Subscriber] | None = None):
        self.subscribers: dict[str, Subscriber] = {s.id: s for s in subscribers or []}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.notifications: list[NotificationRecord] = []
        self.fail_update_for: set[str] = set()
        self.fail_find_many = False
        self.fail_record = False

    def add(self, subscriber: Subscriber) -> Subscriber:
        self.subscribers[subscriber.id] = subscriber
        return subscriber

    async def find_many(self) -> list[Subscriber]:
        if self.fail_find_many:
            raise PersistenceError("database offline", operation="find_many")
        return [dataclasses.replace(s) for s in self.subscribers.values()]

    async def find_unique(self, subscriber_id: str) -> Subscriber | None:
        subscriber = self.subscribers.get(subscriber_id)
        return dataclasses.replace(subscriber) if subscriber else None

    async def update(self, subscriber_id: str, fields: dict[str, Any]) -> None:
        if subscriber_id in self.fail_update_for:
            raise PersistenceError("write rejected", operation="update", subscriber_id=subscriber_id)
        self.updates.append((subscriber_id, dict(fields)))
        current = self.subscribers[subscriber_id]
        self.subscribers[subscriber_id] = dataclasses.replace(current, **fields)

    async def mute(self, device_id: str, hours: int, now: datetime | None = None) -> datetime:
        muted_until = (now or datetime.now(timezone.utc)) + timedelta(hours=hours)
        for sid, s in self.subscribers.items():
            if s.device_id == device_id:
                self.subscribers[sid] = dataclasses.replace(s, muted_until=muted_until)
        return muted_until

    async def unmute(self, device_id: str) -> None:
        for sid, s in self.subscribers.items():
            if s.device_id == device_id:
                self.subscribers[sid] = dataclasses.replace(s, muted_until=None)

    async def record_notification(self, record: NotificationRecord) -> None:
        if self.fail_record:
            raise PersistenceError("audit table missing", operation="record_notification")
        self.notifications.append(record)

    def get(self, subscriber_id: str) -> Subscriber:
        return self.subscribers[subscriber_id]


class FakeTransport:
    """Records pushes; fails for device ids listed in fail_for"""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()
        self.last_error: str | None = None

    async def send(self, device_id, title, body, severity, url=None, url_title=None) -> bool:
        if device_id in self.raise_for:
            raise RuntimeError("transport exploded")
        if device_id in self.fail_for:
            self.last_error = "invalid device"
            return False
        self.last_error = None
        self.sent.append({
            "device_id": device_id,
            "title": title,
            "body": body,
            "severity": severity,
            "url": url,
            "url_title": url_title,
        })
        return True


class ScriptedGateway:
    """
    Gateway double that replays a script of results.

    Each entry is a list of readings (returned) or an exception (raised).
    The last entry repeats once the script runs out. Setting `gate` makes
    every call wait until the event is set.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[list[str]] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def fetch(self, signal_ids: list[str]) -> list[SensorReading]:
        self.calls.append(list(signal_ids))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        return step


def readings(level: float = 1.0, flow: float = 2.0, fecha: str = "2025-07-06 13:55:00") -> list[SensorReading]:
    return [
        SensorReading(signal_id=LEVEL_ID, local_timestamp=fecha, value=level, unit="m"),
        SensorReading(signal_id=FLOW_ID, local_timestamp=fecha, value=flow, unit="m³/s"),
    ]


def make_subscriber(
    subscriber_id: str = "u1",
    metric: Metric = Metric.LEVEL,
    threshold: float = 1.5,
    state: AlarmState = AlarmState.NORMAL,
    counter: int = 0,
    language: str = "en",
    muted_until: datetime | None = None,
) -> Subscriber:
    return Subscriber(
        id=subscriber_id,
        device_id=f"dev-{subscriber_id}",
        metric=metric,
        threshold=threshold,
        language=language,
        alarm_state=state,
        consecutive_normal_count=counter,
        muted_until=muted_until,
    )
