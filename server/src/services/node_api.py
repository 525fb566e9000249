from __future__ import annotations

import urllib.parse
from typing import Any, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from server.src.core.logging import get_logger

from ..core.errors import MalformedResponse, SourceUnreachable
from ..schemas import (
    FederationInfoResponse,
    LogRule,
    NodeStatusResponse,
    PendingPoll,
    WalletBalanceResponse,
    WalletHistoryEntry,
)

logger = get_logger(__name__)

STATUS_PATH = "/api/Node/status"
BEST_BLOCK_HASH_PATH = "/api/Consensus/getbestblockhash"
FEDERATION_INFO_PATH = "/api/FederationGateway/info"
WALLET_BALANCE_PATH = "/api/FederationWallet/balance"
WALLET_HISTORY_PATH = "/api/FederationWallet/history"
MEMPOOL_PATH = "/api/Mempool/getrawmempool"
LOG_RULES_PATH = "/api/Node/logrules"
PENDING_POLLS_PATH = "/api/Voting/pendingpolls"

ModelT = TypeVar("ModelT", bound=BaseModel)

_string_list = TypeAdapter(List[str])
_log_rules = TypeAdapter(List[LogRule])
_history = TypeAdapter(List[WalletHistoryEntry])
_polls = TypeAdapter(List[PendingPoll])


class NodeDataSource(Protocol):
    """Calls the dashboard needs from a node. Implementations raise
    SourceUnreachable or MalformedResponse on failure."""

    async def fetch_status(self) -> NodeStatusResponse: ...

    async def fetch_best_block_hash(self) -> str: ...

    async def fetch_federation_info(self) -> FederationInfoResponse: ...

    async def fetch_wallet_balance(self) -> WalletBalanceResponse: ...

    async def fetch_wallet_history(self) -> List[WalletHistoryEntry]: ...

    async def fetch_mempool(self) -> List[str]: ...

    async def fetch_log_rules(self) -> List[LogRule]: ...

    async def fetch_pending_polls(self) -> List[PendingPoll]: ...


def join_url(base: str, path: str) -> str:
    normalized_base = base.rstrip("/") + "/"
    return urllib.parse.urljoin(normalized_base, path.lstrip("/"))


class NodeApiClient:
    """Full-node REST adapter built on a shared httpx.AsyncClient.

    Every request is bounded by the client timeout. Transport failures and
    non-2xx answers raise SourceUnreachable; undecodable or mis-shaped
    bodies raise MalformedResponse.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient,
        history_max_entries: int = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._history_max_entries = history_max_entries

    async def fetch_status(self) -> NodeStatusResponse:
        return await self._get_model(STATUS_PATH, NodeStatusResponse)

    async def fetch_best_block_hash(self) -> str:
        payload = await self._get_json(BEST_BLOCK_HASH_PATH)
        if not isinstance(payload, str):
            raise MalformedResponse(
                "best block hash is not a string", url=join_url(self.base_url, BEST_BLOCK_HASH_PATH)
            )
        return payload

    async def fetch_federation_info(self) -> FederationInfoResponse:
        return await self._get_model(FEDERATION_INFO_PATH, FederationInfoResponse)

    async def fetch_wallet_balance(self) -> WalletBalanceResponse:
        return await self._get_model(WALLET_BALANCE_PATH, WalletBalanceResponse)

    async def fetch_wallet_history(self) -> List[WalletHistoryEntry]:
        return await self._get_list(
            WALLET_HISTORY_PATH,
            _history,
            params={"maxEntriesToReturn": self._history_max_entries},
        )

    async def fetch_mempool(self) -> List[str]:
        return await self._get_list(MEMPOOL_PATH, _string_list)

    async def fetch_log_rules(self) -> List[LogRule]:
        return await self._get_list(LOG_RULES_PATH, _log_rules)

    async def fetch_pending_polls(self) -> List[PendingPoll]:
        return await self._get_list(PENDING_POLLS_PATH, _polls)

    async def _get_model(self, path: str, model: Type[ModelT]) -> ModelT:
        payload = await self._get_json(path)
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            url = join_url(self.base_url, path)
            logger.warning("Node response for %s did not match %s", url, model.__name__)
            raise MalformedResponse(f"unexpected payload shape: {exc.error_count()} error(s)", url=url) from exc

    async def _get_list(self, path: str, adapter: TypeAdapter, params: Optional[dict] = None) -> list:
        payload = await self._get_json(path, params=params)
        if payload is None:
            return []
        try:
            return adapter.validate_python(payload)
        except ValidationError as exc:
            url = join_url(self.base_url, path)
            logger.warning("Node response for %s was not the expected list", url)
            raise MalformedResponse(f"unexpected payload shape: {exc.error_count()} error(s)", url=url) from exc

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        full_url = join_url(self.base_url, path)
        try:
            response = await self._client.get(full_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Node request failed for %s: %s", full_url, exc)
            raise SourceUnreachable(f"HTTP status error: {exc.response.status_code}", url=full_url) from exc
        except httpx.HTTPError as exc:
            logger.warning("Node request error for %s: %s", full_url, exc)
            raise SourceUnreachable(f"HTTP error: {exc}", url=full_url) from exc

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Node response for %s was not valid JSON", full_url)
            raise MalformedResponse("invalid JSON", url=full_url) from exc
