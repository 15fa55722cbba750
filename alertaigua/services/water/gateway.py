"""
Sensor Gateway

One request to the SAIH Ebro real-time telemetry API plus structural
validation of its response. No retries and no shared state here; the
retry controller and the poller own those concerns.

Request:  GET {base_url}?senal=A153C01NRIO1,A153C65QRIO1&apikey=...
Response: [{"senal": "...", "fecha": "2025-07-06 12:00:00", "valor": 1.23,
            "unidades": "m", "descripcion": "...", "tendencia": "derecha"}, ...]
"""

from dataclasses import dataclass
from typing import Any

import httpx

from common.exceptions import MalformedResponseError, NetworkError
from common.logging_setup import get_service_logger

logger = get_service_logger("water.gateway")

# Fields every reading must carry, with the accepted JSON types
REQUIRED_FIELDS: dict[str, tuple[type, ...]] = {
    "senal": (str,),
    "fecha": (str,),
    "valor": (int, float),
}


@dataclass(frozen=True)
class SensorReading:
    """One upstream measurement (discarded after validation)"""
    signal_id: str
    local_timestamp: str
    value: float
    unit: str = ""
    description: str = ""
    trend: str = ""

    @classmethod
    def from_payload(cls, item: Any) -> "SensorReading":
        """
        Validate and convert one API item.

        Raises:
            MalformedResponseError: missing field or wrong type
        """
        if not isinstance(item, dict):
            raise MalformedResponseError("Reading is not an object", item)

        for name, types in REQUIRED_FIELDS.items():
            value = item.get(name)
            # bool is an int subclass; a boolean reading is malformed
            if isinstance(value, bool) or not isinstance(value, types):
                raise MalformedResponseError(f"Malformed sensor data: field '{name}'", item)

        return cls(
            signal_id=item["senal"],
            local_timestamp=item["fecha"],
            value=float(item["valor"]),
            unit=str(item.get("unidades") or ""),
            description=str(item.get("descripcion") or ""),
            trend=str(item.get("tendencia") or ""),
        )


class SensorGateway:
    """SAIH Ebro telemetry client"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 30.0,
        verify_tls: bool = False,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.verify_tls = verify_tls
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                verify=self.verify_tls,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self, signal_ids: list[str]) -> list[SensorReading]:
        """
        Fetch the latest readings for the given signals.

        Args:
            signal_ids: Ordered signal identifiers (joined with commas)

        Returns:
            Structurally valid readings, in response order

        Raises:
            NetworkError: transport failure, timeout or non-2xx status
            MalformedResponseError: body is not a list of well-formed readings
        """
        client = await self._get_client()
        params = {"senal": ",".join(signal_ids), "apikey": self.api_key}

        try:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Telemetry API returned {e.response.status_code}",
                host=e.request.url.host,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Telemetry request failed: {e!r}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError("Response body is not JSON", response.text) from e

        if not isinstance(payload, list):
            raise MalformedResponseError("Unexpected API response: not an array", payload)

        readings = [SensorReading.from_payload(item) for item in payload]

        logger.debug(
            f"Fetched {len(readings)} readings for {len(signal_ids)} signals",
            extra={"signals": signal_ids, "reading_count": len(readings)},
        )
        return readings
