from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...core.logging import get_logger
from ...services.notifier import WebSocketBroadcaster

router = APIRouter(tags=["updates"])
logger = get_logger(__name__)


@router.websocket("/ws/updates")
async def updates(websocket: WebSocket) -> None:
    """Push CacheIsDifferent / NodeUnavailable events to the connected client."""
    broadcaster: WebSocketBroadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    await broadcaster.subscribe(websocket)
    try:
        # Clients do not send anything meaningful; reading detects the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.unsubscribe(websocket)
