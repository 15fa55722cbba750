"""
Pushsafer Notifier

Sends push notifications through the Pushsafer REST API and records every
attempt in the notification audit log.

Severity maps to Pushsafer sound/vibration/icon codes:
    critical -> s=62, v=3, i=74
    normal   -> s=12, v=1, i=4
"""

from enum import Enum
from typing import Any

import httpx

from common.exceptions import NotificationError
from common.logging_setup import get_service_logger
from storage.subscribers import NotificationRecord, Subscriber

logger = get_service_logger("notify.pushsafer")


class Severity(str, Enum):
    NORMAL = "normal"
    CRITICAL = "critical"


SEVERITY_PARAMS: dict[Severity, dict[str, str]] = {
    Severity.CRITICAL: {"s": "62", "v": "3", "i": "74"},
    Severity.NORMAL: {"s": "12", "v": "1", "i": "4"},
}


class PushsaferClient:
    """Pushsafer transport"""

    def __init__(
        self,
        private_key: str,
        api_url: str = "https://www.pushsafer.com/api",
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.private_key = private_key
        self.api_url = api_url
        self.timeout_s = timeout_s
        self._client = client
        self.last_error: str | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def deliver(
        self,
        device_id: str,
        title: str,
        body: str,
        severity: Severity = Severity.NORMAL,
        url: str | None = None,
        url_title: str | None = None,
    ) -> dict[str, Any]:
        """
        Send one message.

        Raises:
            NotificationError: on transport failure or an API-level rejection
        """
        form = {
            "k": self.private_key,
            "t": title,
            "m": body,
            "d": device_id,
            **SEVERITY_PARAMS[severity],
        }
        if url:
            form["u"] = url
            if url_title:
                form["ut"] = url_title

        client = await self._get_client()
        try:
            response = await client.post(self.api_url, data=form)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Pushsafer returned {e.response.status_code}: {e.response.text[:200]}",
                device_id=device_id,
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Pushsafer request failed: {e!r}", device_id=device_id) from e
        except ValueError as e:
            raise NotificationError("Pushsafer response is not JSON", device_id=device_id) from e

        if not isinstance(result, dict):
            raise NotificationError(
                f"Pushsafer response is not an object: {str(result)[:200]}",
                device_id=device_id,
            )
        if str(result.get("status")) != "1":
            raise NotificationError(
                f"Pushsafer rejected message: {result.get('error') or result}",
                device_id=device_id,
            )
        return result

    async def send(
        self,
        device_id: str,
        title: str,
        body: str,
        severity: Severity = Severity.NORMAL,
        url: str | None = None,
        url_title: str | None = None,
    ) -> bool:
        """Send one message; True on success, failures are logged"""
        try:
            result = await self.deliver(device_id, title, body, severity, url, url_title)
        except NotificationError as e:
            self.last_error = e.message
            logger.error(
                f"Pushsafer notification failed: {e.message}",
                extra={"device_id": device_id},
            )
            return False

        self.last_error = None
        logger.info(
            "Pushsafer notification sent",
            extra={"device_id": device_id, "result": result.get("success")},
        )
        return True


class Notifier:
    """Transport plus best-effort audit trail"""

    def __init__(self, transport: Any, store: Any):
        self.transport = transport
        self.store = store

    async def notify(
        self,
        subscriber: Subscriber,
        kind: str,
        title: str,
        body: str,
        severity: Severity = Severity.NORMAL,
        url: str | None = None,
        url_title: str | None = None,
    ) -> bool:
        """
        Push a message to one subscriber and audit the attempt.

        Returns:
            True if the transport accepted the message
        """
        error: str | None = None
        try:
            success = await self.transport.send(
                subscriber.device_id, title, body, severity, url, url_title
            )
        except Exception as e:
            logger.error(
                f"Push transport raised for {subscriber.id}: {e!r}",
                extra={"subscriber_id": subscriber.id, "kind": kind},
            )
            success = False
            error = repr(e)

        if not success and error is None:
            error = getattr(self.transport, "last_error", None) or "send failed"

        record = NotificationRecord(
            user_id=subscriber.id,
            device_id=subscriber.device_id,
            type=kind,
            title=title,
            message=body,
            success=success,
            error_message=error,
        )
        try:
            await self.store.record_notification(record)
        except Exception as e:
            logger.error(
                f"Failed to log notification for {subscriber.id}: {e}",
                extra={"subscriber_id": subscriber.id, "kind": kind},
            )

        return success
