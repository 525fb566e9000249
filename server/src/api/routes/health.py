from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", summary="Application health probe")
async def healthcheck(request: Request) -> dict[str, Any]:
    """Readiness probe. Includes node availability once the refresh service is running."""
    body: dict[str, Any] = {"status": "ok"}
    service = getattr(request.app.state, "dashboard_service", None)
    if service is not None:
        state = service.availability
        body["mainchainUp"] = state.mainchain_up
        body["sidechainUp"] = state.sidechain_up
        body["lastCycleSucceeded"] = state.last_cycle_succeeded
    return body
