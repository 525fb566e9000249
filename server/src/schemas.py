from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from server.src.core.logging import get_logger

logger = get_logger(__name__)

SATOSHIS_PER_COIN = 100_000_000


class NodeResponse(BaseModel):
    """Base for payloads returned by the full-node REST API.

    The node serializes camelCase keys; unknown keys are ignored so newer node
    versions do not break parsing.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PeerRecord(NodeResponse):
    version: str = ""
    remote_socket_endpoint: str = ""
    tip_height: int = 0
    is_inbound: Optional[bool] = None

    @field_validator("version", "remote_socket_endpoint", "tip_height", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        # Peers still handshaking report nulls for fields they do not know yet.
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class NodeStatusResponse(NodeResponse):
    agent: Optional[str] = None
    version: Optional[str] = None
    network: Optional[str] = None
    coin_ticker: Optional[str] = None
    state: Optional[str] = None
    consensus_height: int = 0
    block_store_height: int = 0
    best_peer_height: Optional[int] = None
    running_time: str = ""
    inbound_peers: list[PeerRecord] = Field(default_factory=list)
    outbound_peers: list[PeerRecord] = Field(default_factory=list)

    @field_validator("running_time", mode="before")
    @classmethod
    def _stringify_running_time(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("inbound_peers", "outbound_peers", mode="before")
    @classmethod
    def _valid_peers(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        records = []
        for raw in value:
            try:
                records.append(PeerRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Dropping unreadable %s record: %s", info.field_name, exc.errors()[0]["msg"])
        return records

    @property
    def sync_progress(self) -> float:
        """Block store height relative to the best known peer, as a percentage."""
        if not self.best_peer_height:
            return 100.0
        progress = self.block_store_height / self.best_peer_height * 100.0
        return round(min(100.0, progress), 2)


class FederationInfoResponse(NodeResponse):
    active: bool = False
    multisig_address: Optional[str] = None
    federation_multisig_pub_keys: list[str] = Field(default_factory=list)
    endpoints: list[str] = Field(default_factory=list)

    @field_validator("federation_multisig_pub_keys", "endpoints", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def endpoints_text(self) -> str:
        return ",".join(self.endpoints)


class AccountBalance(NodeResponse):
    account_name: Optional[str] = None
    amount_confirmed: int = 0
    amount_unconfirmed: int = 0


class WalletBalanceResponse(NodeResponse):
    balances: list[AccountBalance] = Field(default_factory=list)

    @property
    def confirmed_balance(self) -> float:
        return sum(b.amount_confirmed for b in self.balances) / SATOSHIS_PER_COIN

    @property
    def unconfirmed_balance(self) -> float:
        return sum(b.amount_unconfirmed for b in self.balances) / SATOSHIS_PER_COIN


class WalletHistoryEntry(NodeResponse):
    """A single federation wallet withdrawal. Extra keys are kept verbatim."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True
    )

    id: Optional[str] = None
    deposit_id: Optional[str] = None
    amount: Optional[int] = None
    paying_to: Optional[str] = None
    block_height: Optional[int] = None
    block_hash: Optional[str] = None
    transfer_status: Optional[str] = None


class LogRule(NodeResponse):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    rule_name: str = ""
    log_level: str = ""
    filename: Optional[str] = None


class PendingPoll(NodeResponse):
    id: Optional[int] = None
    is_pending: Optional[bool] = None
    voting_data: Optional[Any] = None


class SnapshotModel(BaseModel):
    """Immutable dashboard models, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Peer(SnapshotModel):
    endpoint: str
    direction: Literal["inbound", "outbound"]
    height: int = 0
    version: str = ""


class NodeSnapshot(SnapshotModel):
    best_block_hash: str = ""
    block_height: int = 0
    sync_progress: float = 0.0
    uptime: str = ""
    mempool_size: int = 0
    log_rules: tuple[LogRule, ...] = ()
    peers: tuple[Peer, ...] = ()
    federation_members: tuple[Peer, ...] = ()
    confirmed_balance: float = -1
    unconfirmed_balance: float = -1
    wallet_history: tuple[WalletHistoryEntry, ...] = ()
    federation_address: str = ""
    pending_polls: Optional[int] = None
    coin_ticker: str = ""
    web_api_url: str = ""
    swagger_url: str = ""


class DashboardSnapshot(SnapshotModel):
    status: bool = True
    cache_built: bool = Field(default=True, alias="isCacheBuilt")
    mainchain_wallet_address: str = ""
    sidechain_wallet_address: str = ""
    mining_public_keys: tuple[str, ...] = ()
    stratis_node: NodeSnapshot
    sidechain_node: NodeSnapshot

    def to_cache_value(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_document(self) -> dict[str, Any]:
        """JSON-compatible form used for structural comparison and the HTTP view."""
        return self.model_dump(mode="json", by_alias=True)


class DashboardUnavailableRead(BaseModel):
    status: bool = False
    cache_built: bool = Field(default=False, serialization_alias="isCacheBuilt")
    node_unavailable: bool = Field(default=False, serialization_alias="nodeUnavailable")
