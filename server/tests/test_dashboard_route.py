from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from server.tests.fakes import FakeNodeSource, FakeProber, MAINCHAIN_URL, RecordingBroadcaster
from server.src import database
from server.src.core.app import create_app
from server.src.services.cache import DASHBOARD_KEY, UNAVAILABLE_KEY
from server.src.services.dashboard_cycle import DashboardCycleService
from server.src.services.snapshot_builder import build_node_builders


async def _get_dashboard(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.get("/api/dashboard")


@pytest.mark.asyncio
async def test_dashboard_missing_returns_503(make_settings) -> None:
    app = create_app(make_settings())

    response = await _get_dashboard(app)

    assert response.status_code == 503
    assert response.json() == {"status": False, "isCacheBuilt": False, "nodeUnavailable": False}


@pytest.mark.asyncio
async def test_dashboard_reports_unavailable_flag(make_settings) -> None:
    app = create_app(make_settings())
    await app.state.cache_store.set(UNAVAILABLE_KEY, "true")

    response = await _get_dashboard(app)

    assert response.status_code == 503
    assert response.json()["nodeUnavailable"] is True


@pytest.mark.asyncio
async def test_dashboard_serves_snapshot_written_by_cycle(make_settings) -> None:
    settings = make_settings()
    app = create_app(settings)
    prober = FakeProber()
    service = DashboardCycleService(
        settings,
        builders=build_node_builders(settings, FakeNodeSource(), FakeNodeSource()),
        prober=prober,
        store=app.state.cache_store,
        broadcaster=RecordingBroadcaster(),
    )

    await service.run_cycle()
    response = await _get_dashboard(app)

    assert response.status_code == 200
    payload = response.json()
    assert payload["isCacheBuilt"] is True
    assert payload["stratisNode"]["coinTicker"] == "STRAT"
    assert payload["sidechainNode"]["coinTicker"] == "TCRS"

    prober.reachable[MAINCHAIN_URL] = False
    await service.run_cycle()
    response = await _get_dashboard(app)

    assert response.status_code == 503
    assert response.json()["nodeUnavailable"] is True


@pytest.mark.asyncio
async def test_dashboard_with_database_backend(make_settings, isolated_database) -> None:
    settings = make_settings(cache_backend="database", database_url=isolated_database.database_url)
    app = create_app(settings)
    await database.init_database(settings)
    await app.state.cache_store.set(DASHBOARD_KEY, '{"status": true, "isCacheBuilt": true}')

    response = await _get_dashboard(app)

    assert response.status_code == 200
    assert response.json() == {"status": True, "isCacheBuilt": True}
