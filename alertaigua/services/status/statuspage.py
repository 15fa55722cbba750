"""
Statuspage Client

Reads the public Statuspage summary document of the push provider and maps
its vocabulary onto ok / warning / error for the three components we
depend on.
"""

from typing import Any

import httpx

from common.exceptions import MalformedResponseError, NetworkError
from common.logging_setup import get_service_logger

logger = get_service_logger("status.statuspage")

OK = "ok"
WARNING = "warning"
ERROR = "error"

COMPONENT_STATUS = {
    "operational": OK,
    "degraded_performance": WARNING,
    "under_maintenance": WARNING,
    "partial_outage": ERROR,
    "major_outage": ERROR,
}

INDICATOR_STATUS = {
    "none": OK,
    "minor": WARNING,
    "maintenance": WARNING,
}

# Report key -> component name on the status page (case-insensitive)
COMPONENTS = {
    "api": "api",
    "ios_app": "ios app",
    "android_app": "android app",
}


def all_error() -> dict[str, str]:
    return {key: ERROR for key in COMPONENTS}


def map_summary(summary: dict[str, Any]) -> dict[str, str]:
    """
    Map a Statuspage summary document to per-component statuses.

    Components missing from the document fall back to the page-wide
    indicator. Unknown vocabulary maps to error.
    """
    status = summary.get("status")
    indicator = status.get("indicator") if isinstance(status, dict) else None
    fallback = INDICATOR_STATUS.get(indicator, ERROR)

    by_name: dict[str, str] = {}
    for component in summary.get("components") or []:
        if not isinstance(component, dict):
            continue
        name = str(component.get("name", "")).strip().lower()
        if name:
            by_name[name] = component.get("status", "")

    result = {}
    for key, name in COMPONENTS.items():
        if name in by_name:
            result[key] = COMPONENT_STATUS.get(by_name[name], ERROR)
        else:
            result[key] = fallback
    return result


class StatusPageClient:
    """Unauthenticated reader for a Statuspage summary.json"""

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self) -> dict[str, str]:
        """
        Fetch and map the summary document.

        Raises:
            NetworkError: transport failure or non-2xx response
            MalformedResponseError: body is not a JSON object
        """
        client = await self._get_client()
        host = httpx.URL(self.url).host
        try:
            response = await client.get(self.url, headers={"Accept": "application/json"})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Status page returned {e.response.status_code}",
                host=host,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Status page request failed: {e!r}", host=host) from e

        try:
            summary = response.json()
        except ValueError as e:
            raise MalformedResponseError("Status page body is not JSON", response.text) from e

        if not isinstance(summary, dict):
            raise MalformedResponseError("Status page body is not an object", summary)

        return map_summary(summary)
