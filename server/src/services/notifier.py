from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol, Set

from fastapi import WebSocket

from server.src.core.logging import get_logger

logger = get_logger(__name__)

CACHE_IS_DIFFERENT = "CacheIsDifferent"
NODE_UNAVAILABLE = "NodeUnavailable"


class Broadcaster(Protocol):
    async def publish(self, event_name: str, payload: Optional[Any] = None) -> None: ...


class WebSocketBroadcaster:
    """Fan events out to every connected WebSocket subscriber.

    Publishing never raises: a subscriber whose send fails is dropped and the
    remaining subscribers still receive the event.
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        self._subscribers: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._send_timeout = send_timeout

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscribers.add(websocket)
        logger.debug("Subscriber connected (%d total)", len(self._subscribers))

    async def unsubscribe(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscribers.discard(websocket)
        logger.debug("Subscriber disconnected (%d total)", len(self._subscribers))

    async def publish(self, event_name: str, payload: Optional[Any] = None) -> None:
        async with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            logger.debug("No subscribers for %s", event_name)
            return

        message = {"event": event_name, "payload": payload}
        results = await asyncio.gather(
            *(self._send(ws, message) for ws in subscribers),
        )
        stale = [ws for ws, delivered in zip(subscribers, results) if not delivered]
        if stale:
            async with self._lock:
                self._subscribers.difference_update(stale)
        logger.info(
            "Published %s to %d subscriber(s), dropped %d",
            event_name,
            len(subscribers) - len(stale),
            len(stale),
        )

    async def _send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self._send_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.debug("Dropping subscriber after failed send: %s", exc)
            return False
