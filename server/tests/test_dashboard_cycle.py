from __future__ import annotations

import asyncio
import json

import pytest

from server.tests.fakes import (
    FakeNodeSource,
    FakeProber,
    MAINCHAIN_URL,
    SIDECHAIN_URL,
    RecordingBroadcaster,
)
from server.src.core.errors import MalformedResponse, SourceUnreachable
from server.src.services.cache import DASHBOARD_KEY, UNAVAILABLE_KEY, MemoryCacheStore
from server.src.services.dashboard_cycle import CycleOutcome, DashboardCycleService
from server.src.services.notifier import CACHE_IS_DIFFERENT, NODE_UNAVAILABLE
from server.src.services.snapshot_builder import build_node_builders


def _service(settings, *, main_source=None, side_source=None, prober=None, store=None, broadcaster=None):
    main_source = main_source or FakeNodeSource()
    side_source = side_source or FakeNodeSource()
    return DashboardCycleService(
        settings,
        builders=build_node_builders(settings, main_source, side_source),
        prober=prober or FakeProber(),
        store=store or MemoryCacheStore(),
        broadcaster=broadcaster or RecordingBroadcaster(),
    )


@pytest.mark.asyncio
async def test_identical_cycles_broadcast_once(make_settings):
    store = MemoryCacheStore()
    broadcaster = RecordingBroadcaster()
    service = _service(make_settings(), store=store, broadcaster=broadcaster)

    assert await service.run_cycle() is CycleOutcome.HEALTHY
    first = json.loads(await store.get(DASHBOARD_KEY))
    assert await service.run_cycle() is CycleOutcome.HEALTHY
    second = json.loads(await store.get(DASHBOARD_KEY))

    assert first == second
    assert broadcaster.count(CACHE_IS_DIFFERENT) == 1
    assert broadcaster.count(NODE_UNAVAILABLE) == 0
    assert service.availability.last_cycle_succeeded is True


@pytest.mark.asyncio
async def test_changed_content_broadcasts_again(make_settings):
    main_source = FakeNodeSource()
    broadcaster = RecordingBroadcaster()
    service = _service(make_settings(), main_source=main_source, broadcaster=broadcaster)

    await service.run_cycle()
    main_source.best_hash = "00000000ffff"
    await service.run_cycle()

    assert broadcaster.count(CACHE_IS_DIFFERENT) == 2


@pytest.mark.asyncio
async def test_snapshot_document_contents(make_settings):
    store = MemoryCacheStore()
    service = _service(make_settings(deployment_mode="50K"), store=store)

    await service.run_cycle()
    document = json.loads(await store.get(DASHBOARD_KEY))

    assert document["status"] is True
    assert document["isCacheBuilt"] is True
    assert document["miningPublicKeys"] == ["02ab00", "03cd11"]
    assert document["mainchainWalletAddress"] == "pFmbRuAnvWC1T2hNFHGUb6hQzEbrWBSgUz"
    stratis = document["stratisNode"]
    assert [p["endpoint"] for p in stratis["federationMembers"]] == ["[::ffff:10.0.0.1]:16179"]
    assert [p["endpoint"] for p in stratis["peers"]] == [
        "[::ffff:192.168.1.5]:16179",
        "[::ffff:10.0.0.2]:51234",
    ]
    assert stratis["pendingPolls"] is None
    assert document["sidechainNode"]["pendingPolls"] == 2


@pytest.mark.asyncio
async def test_unreachable_after_success_removes_snapshot_and_notifies(make_settings):
    store = MemoryCacheStore()
    broadcaster = RecordingBroadcaster()
    prober = FakeProber()
    service = _service(make_settings(), store=store, broadcaster=broadcaster, prober=prober)

    assert await service.run_cycle() is CycleOutcome.HEALTHY
    prober.reachable[MAINCHAIN_URL] = False
    assert await service.run_cycle() is CycleOutcome.DEGRADED

    assert await store.get(DASHBOARD_KEY) is None
    assert await store.get(UNAVAILABLE_KEY) == "true"
    assert broadcaster.count(NODE_UNAVAILABLE) == 1
    state = service.availability
    assert (state.mainchain_up, state.sidechain_up, state.last_cycle_succeeded) == (False, True, False)


@pytest.mark.asyncio
async def test_consecutive_degraded_cycles_notify_once(make_settings):
    broadcaster = RecordingBroadcaster()
    prober = FakeProber()
    service = _service(make_settings(), broadcaster=broadcaster, prober=prober)

    await service.run_cycle()
    prober.reachable[SIDECHAIN_URL] = False
    await service.run_cycle()
    await service.run_cycle()
    await service.run_cycle()

    assert broadcaster.count(NODE_UNAVAILABLE) == 1


@pytest.mark.asyncio
async def test_degraded_from_startup_does_not_notify(make_settings):
    store = MemoryCacheStore()
    broadcaster = RecordingBroadcaster()
    prober = FakeProber({MAINCHAIN_URL: False, SIDECHAIN_URL: False})
    service = _service(make_settings(), store=store, broadcaster=broadcaster, prober=prober)

    await service.run_cycle()

    assert broadcaster.events == []
    assert await store.get(UNAVAILABLE_KEY) == "true"


@pytest.mark.asyncio
async def test_recovery_restores_snapshot_and_clears_flag(make_settings):
    store = MemoryCacheStore()
    broadcaster = RecordingBroadcaster()
    prober = FakeProber()
    service = _service(make_settings(), store=store, broadcaster=broadcaster, prober=prober)

    await service.run_cycle()
    prober.reachable[MAINCHAIN_URL] = False
    await service.run_cycle()
    prober.reachable[MAINCHAIN_URL] = True
    assert await service.run_cycle() is CycleOutcome.HEALTHY

    assert await store.get(DASHBOARD_KEY) is not None
    assert await store.get(UNAVAILABLE_KEY) is None
    # The snapshot was removed while degraded, so the recovered one counts as a change.
    assert broadcaster.events == [CACHE_IS_DIFFERENT, NODE_UNAVAILABLE, CACHE_IS_DIFFERENT]


@pytest.mark.asyncio
async def test_build_failure_skips_cycle_without_touching_state(make_settings):
    store = MemoryCacheStore()
    broadcaster = RecordingBroadcaster()
    main_source = FakeNodeSource()
    service = _service(make_settings(), main_source=main_source, store=store, broadcaster=broadcaster)

    await service.run_cycle()
    cached = await store.get(DASHBOARD_KEY)

    main_source.fail_with = SourceUnreachable("timed out", url=MAINCHAIN_URL)
    assert await service.run_cycle() is CycleOutcome.SKIPPED
    main_source.fail_with = MalformedResponse("invalid JSON", url=MAINCHAIN_URL)
    assert await service.run_cycle() is CycleOutcome.SKIPPED

    assert await store.get(DASHBOARD_KEY) == cached
    assert await store.get(UNAVAILABLE_KEY) is None
    assert broadcaster.events == [CACHE_IS_DIFFERENT]
    assert service.availability.last_cycle_succeeded is True


@pytest.mark.asyncio
async def test_malformed_peer_does_not_abort_cycle(make_settings):
    status = {
        "blockStoreHeight": 10,
        "bestPeerHeight": 10,
        "outboundPeers": [
            {"version": "1", "remoteSocketEndpoint": "no-brackets-here", "tipHeight": 10},
            {"version": "1", "remoteSocketEndpoint": "[::ffff:10.0.0.1]:16179", "tipHeight": 10},
        ],
        "inboundPeers": [
            {"version": "1", "remoteSocketEndpoint": "[::ffff:172.16.0.4]:40000", "tipHeight": 9},
        ],
    }
    store = MemoryCacheStore()
    service = _service(make_settings(), main_source=FakeNodeSource(status=status), store=store)

    assert await service.run_cycle() is CycleOutcome.HEALTHY
    stratis = json.loads(await store.get(DASHBOARD_KEY))["stratisNode"]

    assert [p["endpoint"] for p in stratis["federationMembers"]] == ["[::ffff:10.0.0.1]:16179"]
    assert [p["endpoint"] for p in stratis["peers"]] == ["[::ffff:172.16.0.4]:40000"]


@pytest.mark.asyncio
async def test_peers_with_null_fields_do_not_abort_cycle(make_settings):
    status = {
        "blockStoreHeight": 10,
        "bestPeerHeight": 10,
        "outboundPeers": [
            {"version": "1", "remoteSocketEndpoint": None, "tipHeight": 10},
            {"version": "1", "remoteSocketEndpoint": "[::ffff:10.0.0.1]:16179", "tipHeight": 10},
        ],
        "inboundPeers": [
            {"version": None, "remoteSocketEndpoint": "[::ffff:172.16.0.4]:40000", "tipHeight": 9},
            {"version": "1", "remoteSocketEndpoint": "[::ffff:172.16.0.5]:40001", "tipHeight": None},
            {"version": "1", "remoteSocketEndpoint": "[::ffff:172.16.0.6]:40002", "tipHeight": "unknown"},
        ],
    }
    store = MemoryCacheStore()
    service = _service(make_settings(), main_source=FakeNodeSource(status=status), store=store)

    assert await service.run_cycle() is CycleOutcome.HEALTHY
    stratis = json.loads(await store.get(DASHBOARD_KEY))["stratisNode"]

    assert [p["endpoint"] for p in stratis["federationMembers"]] == ["[::ffff:10.0.0.1]:16179"]
    assert [(p["endpoint"], p["height"], p["version"]) for p in stratis["peers"]] == [
        ("[::ffff:172.16.0.4]:40000", 9, ""),
        ("[::ffff:172.16.0.5]:40001", 0, "1"),
    ]


@pytest.mark.asyncio
async def test_miner_mode_snapshot_has_not_applicable_wallet_fields(make_settings):
    store = MemoryCacheStore()
    service = _service(make_settings(deployment_mode="10K"), store=store)

    await service.run_cycle()
    document = json.loads(await store.get(DASHBOARD_KEY))

    for node in (document["stratisNode"], document["sidechainNode"]):
        assert node["confirmedBalance"] == -1
        assert node["unconfirmedBalance"] == -1
        assert node["walletHistory"] == []
        assert node["pendingPolls"] is None
    assert document["mainchainWalletAddress"] == ""
    assert document["sidechainWalletAddress"] == ""


@pytest.mark.asyncio
async def test_unreadable_cached_snapshot_counts_as_change(make_settings):
    store = MemoryCacheStore()
    await store.set(DASHBOARD_KEY, "{not json")
    broadcaster = RecordingBroadcaster()
    service = _service(make_settings(), store=store, broadcaster=broadcaster)

    await service.run_cycle()

    assert broadcaster.events == [CACHE_IS_DIFFERENT]


@pytest.mark.asyncio
async def test_background_loop_runs_immediately_and_stops_cleanly(make_settings):
    prober = FakeProber()
    store = MemoryCacheStore()
    service = _service(make_settings(refresh_interval_seconds=0.05), prober=prober, store=store)

    await service.start()
    for _ in range(100):
        if prober.probes >= 2:
            break
        await asyncio.sleep(0.01)
    await service.stop()
    probes_at_stop = prober.probes
    await asyncio.sleep(0.1)

    assert probes_at_stop >= 2
    assert prober.probes == probes_at_stop
    assert await store.get(DASHBOARD_KEY) is not None


class _SlowProber(FakeProber):
    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def probe(self, mainchain: str, sidechain: str):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.02)
        self.active -= 1
        return await super().probe(mainchain, sidechain)


@pytest.mark.asyncio
async def test_cycles_never_overlap(make_settings):
    prober = _SlowProber()
    service = _service(make_settings(), prober=prober)

    await asyncio.gather(*(service.run_cycle() for _ in range(4)))

    assert prober.max_active == 1
    assert prober.probes == 4


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_finish(make_settings):
    prober = _SlowProber()
    store = MemoryCacheStore()
    service = _service(make_settings(refresh_interval_seconds=60), prober=prober, store=store)

    await service.start()
    await asyncio.sleep(0.005)
    await service.stop()

    assert prober.probes == 1
    assert await store.get(DASHBOARD_KEY) is not None


class _ExplodingBroadcaster(RecordingBroadcaster):
    async def publish(self, event_name, payload=None):
        await super().publish(event_name, payload)
        raise RuntimeError("transport down")


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_break_cycle(make_settings):
    store = MemoryCacheStore()
    service = _service(make_settings(), store=store, broadcaster=_ExplodingBroadcaster())

    assert await service.run_cycle() is CycleOutcome.HEALTHY
    assert await store.get(DASHBOARD_KEY) is not None
