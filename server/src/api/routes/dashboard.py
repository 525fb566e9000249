from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ...core.logging import get_logger
from ...schemas import DashboardUnavailableRead
from ...services.cache import DASHBOARD_KEY, UNAVAILABLE_KEY, CacheStore

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])
logger = get_logger(__name__)


def _get_cache_store(request: Request) -> CacheStore:
    store = getattr(request.app.state, "cache_store", None)
    if store is None:
        raise RuntimeError("Cache store is not configured on the application")
    return store


@router.get("", summary="Latest dashboard snapshot")
async def get_dashboard(request: Request) -> Any:
    """Return the cached snapshot, or 503 while it is missing.

    The snapshot is authoritative: when it is present the unavailable flag is
    ignored.
    """
    store = _get_cache_store(request)
    cached = await store.get(DASHBOARD_KEY)
    if cached:
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning("Cached dashboard snapshot is not valid JSON")

    unavailable = (await store.get(UNAVAILABLE_KEY)) == "true"
    body = DashboardUnavailableRead(node_unavailable=unavailable)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(by_alias=True),
    )
