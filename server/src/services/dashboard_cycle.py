from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from server.src.core.logging import get_logger

from ..config import Settings
from ..core.errors import DashboardError
from ..schemas import DashboardSnapshot, Peer
from .availability import AvailabilityProber
from .cache import DASHBOARD_KEY, UNAVAILABLE_KEY, CacheStore
from .notifier import CACHE_IS_DIFFERENT, NODE_UNAVAILABLE, Broadcaster
from .peers import PeerClassifier
from .snapshot_builder import NodeRefresh, NodeSnapshotBuilder

logger = get_logger(__name__)


@dataclass(frozen=True)
class AvailabilityState:
    mainchain_up: bool = False
    sidechain_up: bool = False
    last_cycle_succeeded: bool = False


class CycleOutcome(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


class DashboardCycleService:
    """Periodically aggregates both nodes into the cached dashboard snapshot.

    One cycle probes both endpoints, refreshes both node builders, classifies
    peers, writes the snapshot and notifies subscribers when it changed. If
    either node is unreachable the snapshot is removed, the unavailable flag
    is set and subscribers are told once per healthy-to-degraded edge.

    Cycles never overlap: the background loop runs them back to back and
    `run_cycle` holds a lock for its whole duration.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        builders: Tuple[NodeSnapshotBuilder, NodeSnapshotBuilder],
        prober: AvailabilityProber,
        store: CacheStore,
        broadcaster: Broadcaster,
    ) -> None:
        self._settings = settings
        self._mainchain, self._sidechain = builders
        self._prober = prober
        self._store = store
        self._broadcaster = broadcaster
        self._state = AvailabilityState()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    @property
    def availability(self) -> AvailabilityState:
        return self._state

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="dashboard-cycle")
        logger.info(
            "Started dashboard refresh every %.1fs (mainchain=%s, sidechain=%s)",
            self._settings.refresh_interval_seconds,
            self._settings.mainchain_node_url,
            self._settings.sidechain_node_url,
        )

    async def stop(self) -> None:
        """Prevent further cycles and wait for the in-flight one to finish."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("Stopped dashboard refresh")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._settings.refresh_interval_seconds
        while not self._stop_event.is_set():
            started = loop.time()
            try:
                outcome = await self.run_cycle()
                logger.debug("Dashboard cycle finished: %s", outcome.value)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Unhandled error in dashboard cycle")

            # Period is measured start to start; an overrunning cycle is followed immediately.
            delay = max(0.0, interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue

    async def run_cycle(self) -> CycleOutcome:
        async with self._cycle_lock:
            logger.debug("Refreshing the dashboard data")
            mainchain_up, sidechain_up = await self._prober.probe(
                self._settings.mainchain_node_url,
                self._settings.sidechain_node_url,
            )
            if not (mainchain_up and sidechain_up):
                await self._mark_unavailable(mainchain_up, sidechain_up)
                return CycleOutcome.DEGRADED

            try:
                mainchain, sidechain = await asyncio.gather(
                    self._mainchain.refresh(),
                    self._sidechain.refresh(),
                )
                snapshot = self._assemble(mainchain, sidechain)
            except DashboardError as exc:
                logger.warning("Skipping cycle, unable to fetch node data from %s: %s", exc.url, exc)
                return CycleOutcome.SKIPPED
            except Exception:  # noqa: BLE001
                logger.exception("Skipping cycle, unable to build the dashboard snapshot")
                return CycleOutcome.SKIPPED

            await self._store_snapshot(snapshot)
            self._state = AvailabilityState(
                mainchain_up=True, sidechain_up=True, last_cycle_succeeded=True
            )
            return CycleOutcome.HEALTHY

    def _assemble(self, mainchain: NodeRefresh, sidechain: NodeRefresh) -> DashboardSnapshot:
        mainchain_peers = self._classify("mainchain", mainchain)
        sidechain_peers = self._classify("sidechain", sidechain)
        return DashboardSnapshot(
            status=True,
            cache_built=True,
            mainchain_wallet_address=mainchain.fields.get("federation_address", ""),
            sidechain_wallet_address=sidechain.fields.get("federation_address", ""),
            mining_public_keys=tuple(mainchain.federation_info.federation_multisig_pub_keys),
            stratis_node=mainchain.snapshot(*mainchain_peers),
            sidechain_node=sidechain.snapshot(*sidechain_peers),
        )

    def _classify(self, role: str, refresh: NodeRefresh) -> Tuple[Tuple[Peer, ...], Tuple[Peer, ...]]:
        classifier = PeerClassifier(refresh.federation_info.endpoints_text)
        try:
            classifier.classify(refresh.status.outbound_peers, refresh.status.inbound_peers)
        except Exception:  # noqa: BLE001
            logger.exception("Unable to parse %s peers", role)
        return classifier.result()

    async def _store_snapshot(self, snapshot: DashboardSnapshot) -> None:
        changed = self._differs(await self._store.get(DASHBOARD_KEY), snapshot.to_document())

        await self._store.set(DASHBOARD_KEY, snapshot.to_cache_value())
        await self._store.remove(UNAVAILABLE_KEY)

        if changed:
            await self._notify(CACHE_IS_DIFFERENT)
        else:
            logger.debug("Dashboard snapshot unchanged")

    @staticmethod
    def _differs(previous: Optional[str], document: dict) -> bool:
        if not previous:
            return True
        try:
            return json.loads(previous) != document
        except ValueError:
            logger.debug("Cached dashboard snapshot is not valid JSON; treating as changed")
            return True

    async def _mark_unavailable(self, mainchain_up: bool, sidechain_up: bool) -> None:
        logger.warning(
            "Node unavailable (mainchain up=%s, sidechain up=%s)", mainchain_up, sidechain_up
        )
        was_healthy = self._state.last_cycle_succeeded
        await self._store.set(UNAVAILABLE_KEY, "true")
        await self._store.remove(DASHBOARD_KEY)
        self._state = AvailabilityState(
            mainchain_up=mainchain_up, sidechain_up=sidechain_up, last_cycle_succeeded=False
        )
        if was_healthy:
            await self._notify(NODE_UNAVAILABLE)

    async def _notify(self, event_name: str) -> None:
        try:
            await self._broadcaster.publish(event_name)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to publish %s", event_name)
