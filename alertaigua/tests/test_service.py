"""Diagnostics HTTP routes and service shutdown"""

import httpx
import pytest
from aiohttp import test_utils

from common.config import load_service_config
from services.status.statuspage import StatusPageClient
from services.water.service import WaterService
from tests.helpers import (
    FakeClock,
    FakeTransport,
    InMemorySubscriberStore,
    ScriptedGateway,
    make_subscriber,
    readings,
)

CONFIG = {
    "sensor_api": {"base_url": "https://api.saihebro.test/tiempo-real", "api_key": "k"},
    "pushsafer": {"private_key": "pk"},
    "cloud": {"url": "https://abc.supabase.test", "key": "service"},
}


def build_service(gateway=None) -> WaterService:
    status_http = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda r: httpx.Response(200, json={"status": {"indicator": "none"}, "components": []})
    ))
    return WaterService(
        config=load_service_config(CONFIG, env={}),
        clock=FakeClock(),
        store=InMemorySubscriberStore([make_subscriber("u1", threshold=1.5)]),
        transport=FakeTransport(),
        gateway=gateway or ScriptedGateway(readings(level=1.0)),
        status_page=StatusPageClient("https://status.test/summary.json", client=status_http),
    )


@pytest.mark.asyncio
async def test_refresh_runs_a_cycle_and_health_reports_it():
    service = build_service()

    async with test_utils.TestClient(test_utils.TestServer(service.build_app())) as client:
        response = await client.post("/refresh")
        assert response.status == 200
        assert (await response.json()) == {"outcome": "success"}

        response = await client.get("/health")
        body = await response.json()

    assert body["service"] == "water"
    assert body["snapshot"]["water_level"] == 1.0
    assert body["availability"] == {"error_count": 0, "is_unavailable": False}
    assert body["poller"]["cycle_count"] == 1


@pytest.mark.asyncio
async def test_status_route_returns_report():
    service = build_service()
    await service.poller.run_once()

    async with test_utils.TestClient(test_utils.TestServer(service.build_app())) as client:
        response = await client.get("/status")
        body = await response.json()

    assert response.status == 200
    assert body["aa_status"] == "ok"
    assert body["saihebro_status"] == "ok"
    assert body["pushsafer_status"] == {"api": "ok", "ios_app": "ok", "android_app": "ok"}


@pytest.mark.asyncio
async def test_refresh_while_running_is_conflict():
    gateway = ScriptedGateway(readings())
    service = build_service(gateway)

    # Hold the cycle lock as a running cycle would
    async with service.poller._lock:
        async with test_utils.TestClient(test_utils.TestServer(service.build_app())) as client:
            response = await client.post("/refresh")
            assert response.status == 409
            assert (await response.json()) == {"outcome": "skipped"}

    assert gateway.calls == []


@pytest.mark.asyncio
async def test_stop_without_start_closes_clients():
    service = build_service()

    await service.stop()

    assert service.status_page._client is None


def test_service_requires_resolved_config():
    with pytest.raises(TypeError):
        WaterService()
