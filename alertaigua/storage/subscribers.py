"""
Subscriber Store

Reads and writes subscriber records and the notification audit log in
Supabase through its PostgREST interface.

Tables:
- users: one row per registered Pushsafer device
- notifications: one row per push attempt (success or failure)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from common.config import AlarmState, Metric
from common.exceptions import PersistenceError
from common.logging_setup import get_service_logger

logger = get_service_logger("storage.subscribers")

# Mute durations offered to users (hours)
MUTE_DURATIONS_H = (3, 6, 12, 24)


@dataclass
class Subscriber:
    """Registered device and its alarm state"""
    id: str
    device_id: str
    metric: Metric
    threshold: float
    name: str = ""
    language: str = "en"
    alarm_state: AlarmState = AlarmState.NORMAL
    consecutive_normal_count: int = 0
    muted_until: datetime | None = None
    last_warned_at: datetime | None = None

    def is_muted(self, now: datetime) -> bool:
        return self.muted_until is not None and self.muted_until > now

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Subscriber":
        """Build from a `users` row"""
        return cls(
            id=str(row["id"]),
            device_id=str(row["device_id"]),
            metric=Metric(row.get("metric") or Metric.LEVEL.value),
            threshold=float(row["value"]),
            name=row.get("name") or "",
            language=row.get("language") or "en",
            alarm_state=AlarmState(row.get("alarm_state") or AlarmState.NORMAL.value),
            consecutive_normal_count=int(row.get("consecutive_normal_count") or 0),
            muted_until=_parse_instant(row.get("muted_until")),
            last_warned_at=_parse_instant(row.get("last_warned_at")),
        )


@dataclass
class NotificationRecord:
    """Audit entry for one push attempt"""
    user_id: str
    device_id: str
    type: str
    title: str
    message: str
    success: bool
    error_message: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }


def _parse_instant(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (AlarmState, Metric)):
        return value.value
    return value


class SupabaseSubscriberStore:
    """
    Subscriber persistence over Supabase REST.

    Every transport or HTTP failure surfaces as PersistenceError so callers
    can isolate it per subscriber.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.supabase_key = supabase_key
        self.timeout_s = timeout_s
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.supabase_url,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        subscriber_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, f"/rest/v1/{path}", **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"{operation} failed: {e.response.status_code} {e.response.text[:200]}",
                operation=operation,
                subscriber_id=subscriber_id,
            ) from e
        except httpx.HTTPError as e:
            raise PersistenceError(
                f"{operation} failed: {e}",
                operation=operation,
                subscriber_id=subscriber_id,
            ) from e

    async def find_many(self) -> list[Subscriber]:
        """All subscribers; rows that can't be parsed are logged and skipped"""
        response = await self._request(
            "GET", "users", "find_many", params={"select": "*", "order": "id.asc"}
        )
        subscribers = []
        for row in response.json():
            try:
                subscribers.append(Subscriber.from_row(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.error(
                    f"Skipping malformed subscriber row {row.get('id')}: {e}",
                    extra={"subscriber_id": row.get("id")},
                )
        return subscribers

    async def find_unique(self, subscriber_id: str) -> Subscriber | None:
        response = await self._request(
            "GET",
            "users",
            "find_unique",
            subscriber_id=subscriber_id,
            params={"id": f"eq.{subscriber_id}", "select": "*"},
        )
        rows = response.json()
        if not rows:
            return None
        try:
            return Subscriber.from_row(rows[0])
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceError(
                f"Malformed subscriber row: {e}",
                operation="find_unique",
                subscriber_id=subscriber_id,
            ) from e

    async def update(self, subscriber_id: str, fields: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            "users",
            "update",
            subscriber_id=subscriber_id,
            params={"id": f"eq.{subscriber_id}"},
            json={key: _to_column(value) for key, value in fields.items()},
            headers={"Prefer": "return=minimal"},
        )

    async def mute(self, device_id: str, hours: int, now: datetime | None = None) -> datetime:
        """Silence alarm notifications for a device; returns the mute end"""
        if hours not in MUTE_DURATIONS_H:
            raise ValueError(f"Mute duration must be one of {MUTE_DURATIONS_H}, got {hours}")
        now = now or datetime.now(timezone.utc)
        muted_until = now + timedelta(hours=hours)
        await self._request(
            "PATCH",
            "users",
            "mute",
            params={"device_id": f"eq.{device_id}"},
            json={"muted_until": muted_until.isoformat()},
            headers={"Prefer": "return=minimal"},
        )
        logger.info(
            f"Device {device_id} muted for {hours}h",
            extra={"device_id": device_id, "muted_until": muted_until.isoformat()},
        )
        return muted_until

    async def unmute(self, device_id: str) -> None:
        await self._request(
            "PATCH",
            "users",
            "unmute",
            params={"device_id": f"eq.{device_id}"},
            json={"muted_until": None},
            headers={"Prefer": "return=minimal"},
        )
        logger.info(f"Device {device_id} unmuted", extra={"device_id": device_id})

    async def record_notification(self, record: NotificationRecord) -> None:
        await self._request(
            "POST",
            "notifications",
            "record_notification",
            subscriber_id=record.user_id,
            json=record.to_row(),
            headers={"Prefer": "return=minimal"},
        )
