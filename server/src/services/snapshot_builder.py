from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple, Type

from server.src.core.logging import get_logger

from ..config import DeploymentMode, Settings
from ..schemas import (
    FederationInfoResponse,
    NodeSnapshot,
    NodeStatusResponse,
    Peer,
)
from .node_api import NodeDataSource, join_url

logger = get_logger(__name__)

NodeRole = Literal["mainchain", "sidechain"]

COIN_TICKERS: Dict[str, str] = {"mainchain": "STRAT", "sidechain": "TCRS"}


@dataclass(frozen=True)
class NodeRefresh:
    """Everything one refresh learned about a node.

    `fields` holds the normalized snapshot values; the raw status and
    federation info are kept for peer classification, which runs after both
    chains have been refreshed.
    """

    status: NodeStatusResponse
    federation_info: FederationInfoResponse
    fields: Dict[str, Any] = field(default_factory=dict)

    def snapshot(
        self, peers: Tuple[Peer, ...] = (), federation_members: Tuple[Peer, ...] = ()
    ) -> NodeSnapshot:
        return NodeSnapshot(peers=peers, federation_members=federation_members, **self.fields)


class NodeSnapshotBuilder(ABC):
    """Drive a node's data source and expose its normalized snapshot.

    Subclasses decide which wallet data is collected; the deployment mode
    decides whether pending polls are collected on the PoA chain.
    """

    def __init__(
        self,
        source: NodeDataSource,
        *,
        role: NodeRole,
        base_url: str,
        mode: DeploymentMode,
    ) -> None:
        self.source = source
        self.role = role
        self.base_url = base_url
        self.mode = mode
        self._last: Optional[NodeRefresh] = None

    @property
    def last(self) -> Optional[NodeRefresh]:
        return self._last

    @property
    def collects_pending_polls(self) -> bool:
        # Polls live on the PoA sidechain and are only meaningful to full federation members.
        return self.role == "sidechain" and self.mode is DeploymentMode.MULTISIG_FEDERATION

    async def refresh(self) -> NodeRefresh:
        """Fetch everything concurrently and store the result.

        Raises SourceUnreachable or MalformedResponse from the data source;
        the previous result is left untouched in that case.
        """
        status, best_hash, federation_info, mempool, log_rules, pending_polls, wallet = (
            await asyncio.gather(
                self.source.fetch_status(),
                self.source.fetch_best_block_hash(),
                self.source.fetch_federation_info(),
                self.source.fetch_mempool(),
                self.source.fetch_log_rules(),
                self._fetch_pending_polls(),
                self._fetch_wallet(),
            )
        )

        fields: Dict[str, Any] = {
            "best_block_hash": best_hash,
            "block_height": status.block_store_height,
            "sync_progress": status.sync_progress,
            "uptime": status.running_time,
            "mempool_size": len(mempool),
            "log_rules": tuple(log_rules),
            "pending_polls": pending_polls,
            "coin_ticker": COIN_TICKERS[self.role],
            "web_api_url": join_url(self.base_url, "/api"),
            "swagger_url": join_url(self.base_url, "/swagger"),
        }
        fields.update(self._wallet_fields(wallet, federation_info))

        refreshed = NodeRefresh(status=status, federation_info=federation_info, fields=fields)
        self._last = refreshed
        logger.debug(
            "Refreshed %s node at %s (height=%d, mempool=%d)",
            self.role,
            self.base_url,
            status.block_store_height,
            len(mempool),
        )
        return refreshed

    async def _fetch_pending_polls(self) -> Optional[int]:
        if not self.collects_pending_polls:
            return None
        polls = await self.source.fetch_pending_polls()
        return len(polls)

    @abstractmethod
    async def _fetch_wallet(self) -> Any:
        """Fetch variant-specific wallet data (or nothing)."""

    @abstractmethod
    def _wallet_fields(self, wallet: Any, federation_info: FederationInfoResponse) -> Dict[str, Any]:
        """Map the fetched wallet data onto snapshot fields."""


class MultisigSnapshotBuilder(NodeSnapshotBuilder):
    """Federation member node: reports the multisig wallet balance and history."""

    async def _fetch_wallet(self) -> Any:
        return await asyncio.gather(
            self.source.fetch_wallet_balance(),
            self.source.fetch_wallet_history(),
        )

    def _wallet_fields(self, wallet: Any, federation_info: FederationInfoResponse) -> Dict[str, Any]:
        balance, history = wallet
        return {
            "confirmed_balance": balance.confirmed_balance,
            "unconfirmed_balance": balance.unconfirmed_balance,
            "wallet_history": tuple(history),
            "federation_address": federation_info.multisig_address or "",
        }


class MinerSnapshotBuilder(NodeSnapshotBuilder):
    """Miner node: has no federation wallet, so wallet fields are not applicable."""

    async def _fetch_wallet(self) -> Any:
        return None

    def _wallet_fields(self, wallet: Any, federation_info: FederationInfoResponse) -> Dict[str, Any]:
        return {
            "confirmed_balance": -1,
            "unconfirmed_balance": -1,
            "wallet_history": (),
            "federation_address": "",
        }


def builder_factory(mode: DeploymentMode) -> Type[NodeSnapshotBuilder]:
    if mode is DeploymentMode.MULTISIG_FEDERATION:
        return MultisigSnapshotBuilder
    return MinerSnapshotBuilder


def build_node_builders(
    settings: Settings,
    mainchain_source: NodeDataSource,
    sidechain_source: NodeDataSource,
) -> Tuple[NodeSnapshotBuilder, NodeSnapshotBuilder]:
    """Create the (mainchain, sidechain) builder pair for the configured mode."""
    builder_cls = builder_factory(settings.deployment_mode)
    logger.info(
        "Using %s for deployment mode %s",
        builder_cls.__name__,
        settings.deployment_mode.value,
    )
    mainchain = builder_cls(
        mainchain_source,
        role="mainchain",
        base_url=settings.mainchain_node_url,
        mode=settings.deployment_mode,
    )
    sidechain = builder_cls(
        sidechain_source,
        role="sidechain",
        base_url=settings.sidechain_node_url,
        mode=settings.deployment_mode,
    )
    return mainchain, sidechain
